"""Popularity signal and similar-package lookups via the npm search index."""

import logging

from pydantic import BaseModel, ConfigDict, Field

from npmvalidator.adapters.base import BaseAdapter
from npmvalidator.adapters.npm import sanitize_description
from npmvalidator.models.schemas import PackageIdentity, PopularitySignal, SimilarPackage

logger = logging.getLogger(__name__)


class _SearchPackage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    version: str = ""
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)


class _ScoreDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    quality: float = 0.0
    popularity: float = 0.0
    maintenance: float = 0.0


class _Score(BaseModel):
    model_config = ConfigDict(extra="ignore")

    final: float | None = None
    detail: _ScoreDetail = Field(default_factory=_ScoreDetail)


class _SearchObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    package: _SearchPackage
    score: _Score = Field(default_factory=_Score)
    dependents: int | None = None


class _SearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    objects: list[_SearchObject] = Field(default_factory=list)
    total: int = 0


def _unit(value: float) -> float:
    return min(1.0, max(0.0, value))


class PopularityAdapter(BaseAdapter[PackageIdentity, PopularitySignal | None]):
    """Adapter for the npm registry search index.

    Data source: https://registry.npmjs.org/-/v1/search

    The search is by text, so the top hit must be the package itself;
    anything else means the index has no data for it.
    """

    source = "popularity"

    async def _search(self, text: str, size: int) -> _SearchResponse:
        url = f"{self.settings.registry_url}/-/v1/search"
        data = await self._request_json("GET", url, params={"text": text, "size": size})
        return self._decode(_SearchResponse, data)

    async def _fetch(self, identity: PackageIdentity) -> PopularitySignal | None:
        response = await self._search(identity.name, size=1)
        if not response.objects or response.objects[0].package.name != identity.name:
            logger.debug(f"No exact search match for {identity.name}")
            return None

        hit = response.objects[0]
        detail = hit.score.detail
        return PopularitySignal(
            dependents=hit.dependents,
            quality=_unit(detail.quality),
            popularity=_unit(detail.popularity),
            maintenance=_unit(detail.maintenance),
            final=hit.score.final,
        )

    async def search_similar(
        self,
        identity: PackageIdentity,
        keywords: list[str] | None,
        limit: int = 6,
    ) -> list[SimilarPackage]:
        """Find packages sharing keywords with the given one.

        Args:
            identity: The package to find alternatives for (excluded from results).
            keywords: Keywords to search by; the package name is used when empty.
            limit: Maximum number of packages to return.

        Raises:
            FetchError: If the search request fails.
        """
        if keywords:
            text = "keywords:" + ",".join(keywords[:5])
        else:
            text = identity.name

        response = await self._search(text, size=limit + 1)
        similar = [
            SimilarPackage(
                name=obj.package.name,
                description=sanitize_description(obj.package.description),
                version=obj.package.version,
            )
            for obj in response.objects
            if obj.package.name != identity.name
        ]
        return similar[:limit]
