"""
Pytest fixtures and configuration for npm-validator tests.

Provides sample upstream payloads, fake adapters and model factories.
"""

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from npmvalidator.adapters.base import FetchError, FetchErrorKind, FetchResult
from npmvalidator.config import Settings
from npmvalidator.models.schemas import (
    Advisory,
    DownloadStats,
    PackageIdentity,
    PopularitySignal,
    RegistryMetadata,
    RepositoryStats,
    Severity,
)

# =============================================================================
# Test Data Fixtures
# =============================================================================

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for staleness calculations."""
    return NOW


@pytest.fixture
def settings() -> Settings:
    """Settings with a GitHub token and no AI providers."""
    return Settings(github_token="test-token")


@pytest.fixture
def identity() -> PackageIdentity:
    return PackageIdentity(name="left-pad")


@pytest.fixture
def registry_document() -> dict[str, Any]:
    """A trimmed registry document as served by registry.npmjs.org."""
    return {
        "_id": "left-pad",
        "name": "left-pad",
        "description": "String left pad",
        "dist-tags": {"latest": "1.3.0"},
        "versions": {
            "1.2.0": {"name": "left-pad", "version": "1.2.0"},
            "1.3.0": {
                "name": "left-pad",
                "version": "1.3.0",
                "description": "String left pad <b>fast</b>",
                "license": "WTFPL",
                "repository": {"type": "git", "url": "git+https://github.com/left-pad/left-pad.git"},
                "keywords": ["leftpad", "left", "pad", "padding", "string"],
                "dependencies": {},
                "deprecated": "use String.prototype.padStart()",
            },
            "2.0.0-beta.1": {"name": "left-pad", "version": "2.0.0-beta.1"},
        },
        "time": {
            "created": "2014-03-18T02:51:00.000Z",
            "modified": "2022-06-19T09:00:00.000Z",
            "1.2.0": "2017-11-22T10:00:00.000Z",
            "1.3.0": "2018-04-09T10:00:00.000Z",
            "2.0.0-beta.1": "2018-05-01T10:00:00.000Z",
        },
        "maintainers": [{"name": "stevemao", "email": "maochenyan@gmail.com"}],
        "homepage": "https://github.com/stevemao/left-pad#readme",
        "readme": "# left-pad\n\nString left pad.",
        "license": "WTFPL",
    }


@pytest.fixture
def metadata(now: datetime) -> RegistryMetadata:
    """Registry metadata for a package published 30 days before ``now``."""
    return RegistryMetadata(
        name="left-pad",
        version="1.3.0",
        description="String left pad",
        license="WTFPL",
        repository_url="https://github.com/left-pad/left-pad",
        keywords=["leftpad", "padding"],
        publish_times={
            "1.2.0": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "1.3.0": datetime(2025, 5, 2, tzinfo=timezone.utc),
        },
    )


@pytest.fixture
def make_advisory() -> Callable[..., Advisory]:
    """Factory for advisories with sensible defaults."""

    def _make(**overrides: Any) -> Advisory:
        values: dict[str, Any] = {
            "id": "GHSA-test-0001",
            "title": "Prototype Pollution",
            "severity": Severity.HIGH,
            "published_at": datetime(2021, 2, 15, tzinfo=timezone.utc),
        }
        values.update(overrides)
        return Advisory(**values)

    return _make


# =============================================================================
# HTTP Helpers
# =============================================================================


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an httpx client whose requests are answered by a handler function."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


# =============================================================================
# Fake Adapters
# =============================================================================


class FakeAdapter:
    """Stands in for a source adapter, returning a fixed value or error."""

    def __init__(
        self,
        source: str,
        value: Any = None,
        error_kind: FetchErrorKind | None = None,
        raises: Exception | None = None,
    ) -> None:
        self.source = source
        self.value = value
        self.error_kind = error_kind
        self.raises = raises
        self.calls: list[Any] = []

    async def fetch(self, key: Any) -> FetchResult:
        self.calls.append(key)
        if self.raises is not None:
            raise self.raises
        if self.error_kind is not None:
            return FetchResult(
                self.source,
                error=FetchError(self.source, self.error_kind, f"{self.source} failed"),
            )
        return FetchResult(self.source, value=self.value)


@pytest.fixture
def fake_sources(metadata: RegistryMetadata) -> dict[str, FakeAdapter]:
    """Healthy fake adapters for every source."""
    return {
        "registry": FakeAdapter("registry", metadata),
        "downloads": FakeAdapter("downloads", DownloadStats(downloads=2_500_000)),
        "popularity": FakeAdapter(
            "popularity",
            PopularitySignal(dependents=600, quality=0.8, popularity=0.5, maintenance=0.9),
        ),
        "repository": FakeAdapter(
            "repository",
            RepositoryStats(owner="left-pad", name="left-pad", stars=1200, forks=100, open_issues=3),
        ),
        "advisories": FakeAdapter("security", []),
    }


@pytest.fixture
def fake_adapter() -> type[FakeAdapter]:
    """The FakeAdapter class, for building failing sources in tests."""
    return FakeAdapter
