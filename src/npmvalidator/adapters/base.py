"""Base class and result types for upstream data source adapters."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from npmvalidator.config import Settings
from npmvalidator.models.schemas import Platform, RepoRef, SourceError

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class FetchErrorKind(str, Enum):
    """Why an upstream fetch failed."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    NETWORK = "network"
    MALFORMED = "malformed"


class FetchError(Exception):
    """Raised inside adapters when an upstream request fails."""

    def __init__(
        self,
        source: str,
        kind: FetchErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def to_source_error(self) -> SourceError:
        return SourceError(source=self.source, kind=self.kind.value, message=self.message)


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one adapter call: either a value or an error.

    A successful fetch may still carry ``value=None`` when the source simply
    has no data for the package.
    """

    source: str
    value: T | None = None
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BaseAdapter(ABC, Generic[K, T]):
    """Base class for upstream data source adapters.

    Subclasses implement ``_fetch`` and raise FetchError on failure;
    ``fetch`` turns that into a FetchResult so callers never need try/except.
    """

    source: str = "unknown"
    rate_limit_message: str | None = None

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            settings: Base URLs, credentials and timeouts.
            client: Optional shared httpx client. If not provided, one is
                created and closed per request.
        """
        self.settings = settings or Settings()
        self._client = client

    async def fetch(self, key: K) -> FetchResult[T]:
        """Fetch and normalize data for ``key``."""
        try:
            value = await self._fetch(key)
        except FetchError as e:
            logger.warning(f"{self.source} fetch failed for {key}: [{e.kind.value}] {e.message}")
            return FetchResult(self.source, error=e)
        return FetchResult(self.source, value=value)

    @abstractmethod
    async def _fetch(self, key: K) -> T:
        ...

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.settings.user_agent}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.settings.http_timeout)

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            FetchError: On transport failures, error statuses or invalid JSON.
        """
        client = await self._get_client()
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchError(self.source, FetchErrorKind.NETWORK, f"Request to {url} timed out") from e
        except httpx.HTTPError as e:
            raise FetchError(self.source, FetchErrorKind.NETWORK, f"Request to {url} failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                self.source, FetchErrorKind.MALFORMED, f"Invalid JSON from {url}"
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map an error status to a FetchError."""
        status = response.status_code
        if status < 400:
            return

        if status == 404:
            kind = FetchErrorKind.NOT_FOUND
        elif status == 429 or (status == 403 and _is_rate_limited(response)):
            kind = FetchErrorKind.RATE_LIMITED
        elif status in (401, 403):
            kind = FetchErrorKind.UNAUTHORIZED
        else:
            kind = FetchErrorKind.NETWORK

        messages = {
            FetchErrorKind.NOT_FOUND: f"{self.source} returned 404 for {response.request.url}",
            FetchErrorKind.RATE_LIMITED: self.rate_limit_message or f"{self.source} API rate limit exceeded",
            FetchErrorKind.UNAUTHORIZED: f"{self.source} API rejected the credentials (HTTP {status})",
            FetchErrorKind.NETWORK: f"{self.source} API returned HTTP {status}",
        }
        raise FetchError(self.source, kind, messages[kind], status_code=status)

    def _decode(self, schema: type[M], data: Any) -> M:
        """Validate an upstream payload against its response schema."""
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise FetchError(
                self.source,
                FetchErrorKind.MALFORMED,
                f"Unexpected {self.source} response shape: {e.error_count()} invalid field(s)",
            ) from e


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in response.text.lower()


_HOST_PATTERNS = {
    Platform.GITHUB: r"github\.com",
    Platform.GITLAB: r"gitlab\.com",
    Platform.BITBUCKET: r"bitbucket\.org",
}

_SHORTHAND_PATTERN = re.compile(r"^(github|gitlab|bitbucket):([^/\s]+)/([^/\s#?]+)")
_BARE_SHORTHAND_PATTERN = re.compile(r"^([A-Za-z0-9-]+)/([\w.-]+)$")


def parse_repo_url(url: str | None) -> RepoRef | None:
    """Parse a repository URL into a RepoRef.

    Handles the forms found in package.json ``repository`` fields:

    - https://github.com/owner/repo(.git)
    - git+https://github.com/owner/repo.git, git://github.com/owner/repo.git
    - git@github.com:owner/repo.git, ssh://git@github.com/owner/repo.git
    - github:owner/repo, gitlab:owner/repo, bitbucket:owner/repo
    - owner/repo (npm shorthand for GitHub)

    Returns:
        RepoRef if the URL can be parsed, None otherwise.
    """
    if not url:
        return None

    url = url.strip()
    if url.startswith("git+"):
        url = url[4:]

    shorthand = _SHORTHAND_PATTERN.match(url)
    if shorthand:
        platform, owner, repo = shorthand.groups()
        return _make_ref(Platform(platform), owner, repo)

    for platform, host in _HOST_PATTERNS.items():
        pattern = rf"^(?:[a-z+]+://)?(?:[^@/\s]+@)?(?:www\.)?{host}[/:]([^/\s]+)/([^/\s#?]+)"
        match = re.match(pattern, url, re.IGNORECASE)
        if match:
            return _make_ref(platform, match.group(1), match.group(2))

    bare = _BARE_SHORTHAND_PATTERN.match(url)
    if bare:
        return _make_ref(Platform.GITHUB, bare.group(1), bare.group(2))

    return None


def _make_ref(platform: Platform, owner: str, repo: str) -> RepoRef | None:
    repo = repo.removesuffix(".git")
    if not owner or not repo:
        return None
    return RepoRef(platform=platform, owner=owner, repo=repo)
