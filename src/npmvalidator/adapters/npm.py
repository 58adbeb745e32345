"""npm registry and download statistics adapters."""

import logging
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from npmvalidator.adapters.base import BaseAdapter, FetchError, FetchErrorKind
from npmvalidator.models.schemas import DownloadStats, PackageIdentity, RegistryMetadata

logger = logging.getLogger(__name__)

README_EXCERPT_LENGTH = 3000

# Bookkeeping keys in the registry "time" map that are not versions
_TIME_META_KEYS = ("created", "modified")


class _RegistryDocument(BaseModel):
    """Fields of https://registry.npmjs.org/{package} that we use."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    dist_tags: dict[str, str] = Field(default_factory=dict, alias="dist-tags")
    versions: dict[str, dict[str, Any]] = Field(default_factory=dict)
    time: dict[str, str] = Field(default_factory=dict)
    description: str | None = None
    license: Any = None
    homepage: str | None = None
    repository: Any = None
    keywords: Any = None
    maintainers: list[Any] = Field(default_factory=list)
    readme: str | None = None


class _DownloadsPoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    downloads: int
    start: str | None = None
    end: str | None = None
    package: str | None = None


def sanitize_description(description: str | None) -> str:
    """Strip HTML and markdown images some packages put in their description."""
    if not description or not isinstance(description, str):
        return ""
    text = re.sub(r"<[^>]*>", " ", description)
    text = re.sub(r"!\[[^\]]*\]\([^)]*\)", "", text)
    return re.sub(r"\s+", " ", text).strip()


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class RegistryAdapter(BaseAdapter[PackageIdentity, RegistryMetadata]):
    """Adapter for package documents on the npm registry.

    Data source: https://registry.npmjs.org/{package}

    This is the one mandatory source: a not-found here means the package
    does not exist.
    """

    source = "registry"

    async def _fetch(self, identity: PackageIdentity) -> RegistryMetadata:
        url = f"{self.settings.registry_url}/{identity.url_path}"
        data = await self._request_json("GET", url)
        document = self._decode(_RegistryDocument, data)

        # Fall back to the last listed version when dist-tags is missing
        latest_version = document.dist_tags.get("latest")
        if not latest_version and document.versions:
            latest_version = list(document.versions)[-1]
        if not latest_version:
            raise FetchError(
                self.source,
                FetchErrorKind.MALFORMED,
                f"Registry document for {identity.name} lists no versions",
            )

        version_data = document.versions.get(latest_version, {})

        publish_times = {}
        for version, stamp in document.time.items():
            if version in _TIME_META_KEYS:
                continue
            parsed = _parse_timestamp(stamp)
            if parsed is not None:
                publish_times[version] = parsed

        maintainers = [
            m.get("name", "") for m in document.maintainers if isinstance(m, dict)
        ]

        deprecated = version_data.get("deprecated")

        return RegistryMetadata(
            name=document.name,
            version=latest_version,
            description=sanitize_description(
                version_data.get("description") or document.description
            ),
            license=self._extract_license(version_data.get("license") or document.license),
            homepage=version_data.get("homepage") or document.homepage,
            repository_url=self._extract_repo_url(
                version_data.get("repository") or document.repository
            ),
            keywords=self._extract_keywords(version_data.get("keywords") or document.keywords),
            publish_times=publish_times,
            created_at=_parse_timestamp(document.time.get("created")),
            modified_at=_parse_timestamp(document.time.get("modified")),
            dependencies=dict(version_data.get("dependencies") or {}),
            dev_dependencies=dict(version_data.get("devDependencies") or {}),
            maintainers=[m for m in maintainers if m],
            readme=document.readme[:README_EXCERPT_LENGTH] if document.readme else None,
            deprecated=deprecated if isinstance(deprecated, str) and deprecated else None,
        )

    def _extract_repo_url(self, repository: dict | str | None) -> str | None:
        """Extract repository URL from npm repository field.

        Handles various formats:
        - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
        - "github:owner/repo"
        - "https://github.com/owner/repo"
        """
        if isinstance(repository, str):
            url = repository
        elif isinstance(repository, dict):
            url = repository.get("url") or ""
        else:
            return None

        url = url.strip()
        if not url:
            return None

        if url.startswith("git+"):
            url = url[4:]
        if url.startswith("git://"):
            url = "https://" + url[len("git://"):]
        url = url.removesuffix(".git")

        if url.startswith("github:"):
            url = f"https://github.com/{url[7:]}"

        return url

    def _extract_license(self, license_info: Any) -> str | None:
        """Extract license from npm package data."""
        if isinstance(license_info, str):
            return license_info
        elif isinstance(license_info, dict):
            return license_info.get("type") or license_info.get("name")
        elif isinstance(license_info, list) and license_info:
            return self._extract_license(license_info[0])
        return None

    def _extract_keywords(self, keywords: Any) -> list[str]:
        if isinstance(keywords, str):
            return [k for k in re.split(r"[,\s]+", keywords) if k]
        if isinstance(keywords, list):
            return [k for k in keywords if isinstance(k, str) and k]
        return []


class DownloadsAdapter(BaseAdapter[PackageIdentity, DownloadStats]):
    """Adapter for npm download counts.

    Data source: https://api.npmjs.org/downloads/point/last-month/{package}
    """

    source = "downloads"
    period = "last-month"

    async def _fetch(self, identity: PackageIdentity) -> DownloadStats:
        url = f"{self.settings.downloads_url}/point/{self.period}/{identity.name}"
        data = await self._request_json("GET", url)
        point = self._decode(_DownloadsPoint, data)
        return DownloadStats(
            downloads=max(0, point.downloads),
            start=point.start,
            end=point.end,
            package=point.package or identity.name,
        )
