"""GitHub repository statistics adapter."""

import logging
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from npmvalidator.adapters.base import BaseAdapter, FetchError, FetchErrorKind
from npmvalidator.models.schemas import Platform, ReleaseInfo, RepoRef, RepositoryStats

logger = logging.getLogger(__name__)

GITHUB_RATE_LIMIT_MESSAGE = (
    "GitHub API rate limit exceeded. Set GITHUB_TOKEN in your environment or .env file."
)


class GitHubAdapterMixin:
    """Shared request headers for GitHub REST and GraphQL APIs."""

    rate_limit_message = GITHUB_RATE_LIMIT_MESSAGE

    def _headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self.settings.user_agent,
        }
        if self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers


class _License(BaseModel):
    model_config = ConfigDict(extra="ignore")

    spdx_id: str | None = None
    name: str | None = None


class _RepoResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str | None = None
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    pushed_at: datetime | None = None
    language: str | None = None
    archived: bool = False
    license: _License | None = None


class _ReleaseResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tag_name: str
    name: str | None = None
    published_at: datetime | None = None
    prerelease: bool = False
    draft: bool = False


class _ReleaseList(BaseModel):
    releases: list[_ReleaseResponse] = Field(default_factory=list)


class RepositoryAdapter(GitHubAdapterMixin, BaseAdapter[RepoRef, RepositoryStats | None]):
    """Fetches repository statistics from the GitHub REST API.

    A missing repository (404) or a repository hosted elsewhere yields no
    data rather than an error. Rate limiting is reported so the caller can
    suggest configuring a token.
    """

    source = "repository"
    release_limit = 5

    async def _fetch(self, repo_ref: RepoRef) -> RepositoryStats | None:
        if repo_ref.platform != Platform.GITHUB:
            logger.debug(f"Skipping {repo_ref.url}: only GitHub repositories are supported")
            return None

        owner, repo = repo_ref.owner, repo_ref.repo
        try:
            data = await self._request_json("GET", f"{self.settings.github_api_url}/repos/{owner}/{repo}")
        except FetchError as e:
            if e.kind == FetchErrorKind.NOT_FOUND:
                logger.info(f"GitHub repository {owner}/{repo} not found")
                return None
            raise

        repo_data = self._decode(_RepoResponse, data)
        license_info = repo_data.license
        return RepositoryStats(
            owner=owner,
            name=repo_data.name,
            description=repo_data.description,
            stars=repo_data.stargazers_count,
            forks=repo_data.forks_count,
            open_issues=repo_data.open_issues_count,
            pushed_at=repo_data.pushed_at,
            language=repo_data.language,
            is_archived=repo_data.archived,
            license=(license_info.spdx_id or license_info.name) if license_info else None,
            releases=await self._fetch_releases(owner, repo),
        )

    async def _fetch_releases(self, owner: str, repo: str) -> list[ReleaseInfo]:
        """Fetch the latest releases; failures only leave the list empty."""
        url = f"{self.settings.github_api_url}/repos/{owner}/{repo}/releases"
        try:
            data = await self._request_json("GET", url, params={"per_page": self.release_limit})
            releases = self._decode(_ReleaseList, {"releases": data}).releases
        except FetchError as e:
            logger.debug(f"No releases for {owner}/{repo}: {e.message}")
            return []

        return [ReleaseInfo(**release.model_dump()) for release in releases]
