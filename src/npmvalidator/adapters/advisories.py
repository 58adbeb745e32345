"""Security advisory feed from the GitHub Advisory Database."""

import logging
from datetime import datetime
from typing import NoReturn

from pydantic import BaseModel, ConfigDict, Field

from npmvalidator.adapters.base import BaseAdapter, FetchError, FetchErrorKind
from npmvalidator.adapters.github import GitHubAdapterMixin
from npmvalidator.models.schemas import Advisory, PackageIdentity, Severity

logger = logging.getLogger(__name__)

ADVISORY_URL = "https://github.com/advisories"
MAX_PAGES = 10

VULNERABILITIES_QUERY = """
query($packageName: String!, $ecosystem: SecurityAdvisoryEcosystem!, $cursor: String) {
  securityVulnerabilities(first: 100, after: $cursor, ecosystem: $ecosystem, package: $packageName) {
    pageInfo {
      hasNextPage
      endCursor
    }
    nodes {
      advisory {
        ghsaId
        summary
        description
        severity
        publishedAt
        updatedAt
        withdrawnAt
        references {
          url
        }
      }
      vulnerableVersionRange
      firstPatchedVersion {
        identifier
      }
    }
  }
}
"""


class _Reference(BaseModel):
    url: str


class _AdvisoryNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ghsaId: str
    summary: str = ""
    description: str = ""
    severity: str
    publishedAt: datetime | None = None
    updatedAt: datetime | None = None
    withdrawnAt: datetime | None = None
    references: list[_Reference] = Field(default_factory=list)


class _PatchedVersion(BaseModel):
    identifier: str


class _VulnerabilityNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    advisory: _AdvisoryNode
    vulnerableVersionRange: str | None = None
    firstPatchedVersion: _PatchedVersion | None = None


class _PageInfo(BaseModel):
    hasNextPage: bool = False
    endCursor: str | None = None


class _VulnerabilityConnection(BaseModel):
    pageInfo: _PageInfo = Field(default_factory=_PageInfo)
    nodes: list[_VulnerabilityNode] = Field(default_factory=list)


class _QueryData(BaseModel):
    securityVulnerabilities: _VulnerabilityConnection


class _GraphQLError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    type: str | None = None


class _GraphQLResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: _QueryData | None = None
    errors: list[_GraphQLError] = Field(default_factory=list)


class AdvisoryAdapter(GitHubAdapterMixin, BaseAdapter[PackageIdentity, list[Advisory]]):
    """Fetches raw advisories for a package via the GitHub GraphQL API.

    Returns every advisory, including withdrawn ones; deciding which still
    apply is up to the resolver.
    """

    source = "security"

    def __init__(self, *args, ecosystem: str = "NPM", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.ecosystem = ecosystem

    async def _fetch(self, identity: PackageIdentity) -> list[Advisory]:
        nodes: list[_VulnerabilityNode] = []
        cursor: str | None = None

        for _ in range(MAX_PAGES):
            connection = await self._fetch_page(identity, cursor)
            nodes.extend(connection.nodes)
            cursor = connection.pageInfo.endCursor
            if not connection.pageInfo.hasNextPage or cursor is None:
                break
        else:
            logger.debug(
                f"{identity.name} has more than {MAX_PAGES} pages of advisories, keeping the first {len(nodes)}"
            )

        return [self._to_advisory(node) for node in nodes]

    async def _fetch_page(self, identity: PackageIdentity, cursor: str | None) -> _VulnerabilityConnection:
        variables = {"packageName": identity.name, "ecosystem": self.ecosystem}
        if cursor is not None:
            variables["cursor"] = cursor

        data = await self._request_json(
            "POST",
            f"{self.settings.github_api_url}/graphql",
            json={"query": VULNERABILITIES_QUERY, "variables": variables},
        )
        response = self._decode(_GraphQLResponse, data)

        if response.data is None:
            self._raise_graphql_errors(response.errors)
        return response.data.securityVulnerabilities

    def _to_advisory(self, node: _VulnerabilityNode) -> Advisory:
        advisory = node.advisory
        try:
            severity = Severity(advisory.severity.lower())
        except ValueError:
            logger.debug(f"Unknown severity {advisory.severity!r} on {advisory.ghsaId}, using moderate")
            severity = Severity.MODERATE

        url = advisory.references[0].url if advisory.references else f"{ADVISORY_URL}/{advisory.ghsaId}"
        return Advisory(
            id=advisory.ghsaId,
            title=advisory.summary,
            description=advisory.description,
            severity=severity,
            url=url,
            published_at=advisory.publishedAt,
            updated_at=advisory.updatedAt,
            withdrawn_at=advisory.withdrawnAt,
            vulnerable_version_range=node.vulnerableVersionRange,
            first_patched_version=(
                node.firstPatchedVersion.identifier if node.firstPatchedVersion else None
            ),
        )

    def _raise_graphql_errors(self, errors: list[_GraphQLError]) -> NoReturn:
        if any(error.type == "RATE_LIMITED" for error in errors):
            raise FetchError(self.source, FetchErrorKind.RATE_LIMITED, self.rate_limit_message)
        message = errors[0].message if errors else "GraphQL response has no data"
        raise FetchError(self.source, FetchErrorKind.MALFORMED, message)
