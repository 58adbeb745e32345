"""
Tests for the upstream data source adapters.

HTTP is served by httpx.MockTransport handlers; no network access.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from npmvalidator.adapters import (
    AdvisoryAdapter,
    DownloadsAdapter,
    FetchErrorKind,
    PopularityAdapter,
    RegistryAdapter,
    RepositoryAdapter,
    parse_repo_url,
)
from npmvalidator.adapters.advisories import MAX_PAGES
from npmvalidator.adapters.npm import README_EXCERPT_LENGTH, sanitize_description
from npmvalidator.config import Settings
from npmvalidator.models.schemas import PackageIdentity, Platform, RepoRef, Severity


class TestParseRepoUrl:
    """Tests for parse_repo_url."""

    @pytest.mark.parametrize(
        "url,platform,owner,repo",
        [
            ("https://github.com/lodash/lodash", Platform.GITHUB, "lodash", "lodash"),
            ("https://github.com/lodash/lodash.git", Platform.GITHUB, "lodash", "lodash"),
            ("git+https://github.com/expressjs/express.git", Platform.GITHUB, "expressjs", "express"),
            ("git://github.com/substack/minimist.git", Platform.GITHUB, "substack", "minimist"),
            ("git@github.com:facebook/react.git", Platform.GITHUB, "facebook", "react"),
            ("ssh://git@github.com/facebook/react.git", Platform.GITHUB, "facebook", "react"),
            ("https://github.com/babel/babel/tree/main/packages/babel-core", Platform.GITHUB, "babel", "babel"),
            ("github:sindresorhus/got", Platform.GITHUB, "sindresorhus", "got"),
            ("sindresorhus/got", Platform.GITHUB, "sindresorhus", "got"),
            ("https://gitlab.com/group/project", Platform.GITLAB, "group", "project"),
            ("bitbucket:team/repo", Platform.BITBUCKET, "team", "repo"),
        ],
    )
    def test_parses(self, url, platform, owner, repo):
        ref = parse_repo_url(url)

        assert ref == RepoRef(platform=platform, owner=owner, repo=repo)

    @pytest.mark.parametrize("url", [None, "", "https://example.com/some/where", "not a url"])
    def test_unparseable(self, url):
        assert parse_repo_url(url) is None


class TestSanitizeDescription:
    """Tests for sanitize_description."""

    def test_strips_html_and_images(self):
        raw = '<p align="center">Fast   <b>parser</b></p> ![logo](https://x/logo.png)'

        assert sanitize_description(raw) == "Fast parser"

    @pytest.mark.parametrize("raw", [None, "", 42])
    def test_non_text(self, raw):
        assert sanitize_description(raw) == ""


class TestRegistryAdapter:
    """Tests for RegistryAdapter."""

    async def test_fetch_metadata(self, settings, identity, registry_document, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/left-pad"
            return httpx.Response(200, json=registry_document)

        async with mock_client(handler) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.ok
        metadata = result.value
        assert metadata.name == "left-pad"
        assert metadata.version == "1.3.0"
        assert metadata.description == "String left pad fast"
        assert metadata.license == "WTFPL"
        assert metadata.repository_url == "https://github.com/left-pad/left-pad"
        assert metadata.keywords == ["leftpad", "left", "pad", "padding", "string"]
        assert metadata.maintainers == ["stevemao"]
        assert metadata.deprecated == "use String.prototype.padStart()"
        assert metadata.readme.startswith("# left-pad")
        assert set(metadata.publish_times) == {"1.2.0", "1.3.0", "2.0.0-beta.1"}
        assert metadata.latest_publish_time == datetime(2018, 4, 9, 10, 0, tzinfo=timezone.utc)
        assert metadata.created_at == datetime(2014, 3, 18, 2, 51, tzinfo=timezone.utc)

    async def test_stable_versions(self, settings, identity, registry_document, mock_client):
        async with mock_client(lambda request: httpx.Response(200, json=registry_document)) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.value.stable_versions() == ["1.3.0", "1.2.0"]

    async def test_scoped_name_is_encoded(self, settings, mock_client):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path)
            return httpx.Response(200, json={"name": "@babel/core", "dist-tags": {"latest": "7.0.0"}})

        async with mock_client(handler) as client:
            result = await RegistryAdapter(settings, client).fetch(PackageIdentity(name="@babel/core"))

        assert result.ok
        assert seen == [b"/@babel%2Fcore"]

    async def test_latest_falls_back_to_last_version(self, settings, identity, mock_client):
        document = {"name": "left-pad", "versions": {"0.1.0": {}, "0.2.0": {"license": {"type": "MIT"}}}}

        async with mock_client(lambda request: httpx.Response(200, json=document)) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.value.version == "0.2.0"
        assert result.value.license == "MIT"

    async def test_readme_is_truncated(self, settings, identity, registry_document, mock_client):
        registry_document["readme"] = "x" * (README_EXCERPT_LENGTH + 500)

        async with mock_client(lambda request: httpx.Response(200, json=registry_document)) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert len(result.value.readme) == README_EXCERPT_LENGTH

    async def test_not_found(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(404, json={"error": "Not found"})) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert not result.ok
        assert result.error.kind == FetchErrorKind.NOT_FOUND
        assert result.error.status_code == 404

    async def test_no_versions_is_malformed(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(200, json={"name": "left-pad"})) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.MALFORMED

    async def test_invalid_json_is_malformed(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(200, text="<html>oops</html>")) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.MALFORMED

    async def test_wrong_shape_is_malformed(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(200, json=["not", "a", "document"])) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.MALFORMED

    async def test_server_error_is_network(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(503)) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.NETWORK

    async def test_timeout_is_network(self, settings, identity, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with mock_client(handler) as client:
            result = await RegistryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.NETWORK
        assert "timed out" in result.error.message


class TestDownloadsAdapter:
    """Tests for DownloadsAdapter."""

    async def test_fetch(self, settings, identity, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/downloads/point/last-month/left-pad"
            return httpx.Response(
                200,
                json={"downloads": 1_234_567, "start": "2025-05-01", "end": "2025-05-31", "package": "left-pad"},
            )

        async with mock_client(handler) as client:
            result = await DownloadsAdapter(settings, client).fetch(identity)

        assert result.value.downloads == 1_234_567
        assert result.value.start == "2025-05-01"

    async def test_rate_limited(self, settings, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(429)) as client:
            result = await DownloadsAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.RATE_LIMITED
        assert result.error.to_source_error().source == "downloads"


def _search_hit(name: str, **extra) -> dict:
    return {
        "package": {"name": name, "version": "1.0.0", "description": f"{name} <i>desc</i>"},
        "score": {"final": 0.7, "detail": {"quality": 0.9, "popularity": 1.2, "maintenance": 0.4}},
        **extra,
    }


class TestPopularityAdapter:
    """Tests for PopularityAdapter."""

    async def test_exact_match(self, settings, identity, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/-/v1/search"
            assert request.url.params["text"] == "left-pad"
            assert request.url.params["size"] == "1"
            return httpx.Response(200, json={"objects": [_search_hit("left-pad", dependents="4821")]})

        async with mock_client(handler) as client:
            result = await PopularityAdapter(settings, client).fetch(identity)

        signal = result.value
        assert signal.dependents == 4821
        assert signal.quality == 0.9
        assert signal.popularity == 1.0
        assert signal.final == 0.7

    async def test_other_top_hit_is_no_data(self, settings, identity, mock_client):
        body = {"objects": [_search_hit("left-pad-plus")]}

        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            result = await PopularityAdapter(settings, client).fetch(identity)

        assert result.ok
        assert result.value is None

    async def test_search_similar(self, settings, identity, mock_client):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            hits = [_search_hit("left-pad"), _search_hit("pad-left"), _search_hit("string-pad")]
            return httpx.Response(200, json={"objects": hits})

        async with mock_client(handler) as client:
            similar = await PopularityAdapter(settings, client).search_similar(
                identity, ["pad", "string", "left", "padding", "align", "extra"], limit=2
            )

        assert seen["text"] == "keywords:pad,string,left,padding,align"
        assert seen["size"] == "3"
        assert [p.name for p in similar] == ["pad-left", "string-pad"]
        assert similar[0].description == "pad-left desc"


class TestRepositoryAdapter:
    """Tests for RepositoryAdapter."""

    @pytest.fixture
    def repo_ref(self) -> RepoRef:
        return RepoRef(platform=Platform.GITHUB, owner="left-pad", repo="left-pad")

    async def test_fetch_with_releases(self, settings, repo_ref, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer test-token"
            if request.url.path.endswith("/releases"):
                assert request.url.params["per_page"] == "5"
                return httpx.Response(
                    200,
                    json=[{"tag_name": "v1.3.0", "published_at": "2018-04-09T10:00:00Z"}],
                )
            return httpx.Response(
                200,
                json={
                    "name": "left-pad",
                    "stargazers_count": 1200,
                    "forks_count": 100,
                    "open_issues_count": 3,
                    "pushed_at": "2024-01-01T00:00:00Z",
                    "language": "JavaScript",
                    "archived": True,
                    "license": {"spdx_id": "WTFPL", "name": "Do What The F*ck You Want"},
                },
            )

        async with mock_client(handler) as client:
            result = await RepositoryAdapter(settings, client).fetch(repo_ref)

        stats = result.value
        assert stats.stars == 1200
        assert stats.is_archived
        assert stats.license == "WTFPL"
        assert [r.tag_name for r in stats.releases] == ["v1.3.0"]
        assert stats.days_since_push(datetime(2024, 1, 31, tzinfo=timezone.utc)) == 30

    async def test_release_failure_leaves_list_empty(self, settings, repo_ref, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/releases"):
                return httpx.Response(500)
            return httpx.Response(200, json={"name": "left-pad"})

        async with mock_client(handler) as client:
            result = await RepositoryAdapter(settings, client).fetch(repo_ref)

        assert result.ok
        assert result.value.releases == []

    async def test_missing_repository_is_no_data(self, settings, repo_ref, mock_client):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            result = await RepositoryAdapter(settings, client).fetch(repo_ref)

        assert result.ok
        assert result.value is None

    async def test_rate_limited(self, settings, repo_ref, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, headers={"X-RateLimit-Remaining": "0"}, json={"message": "API rate limit exceeded"})

        async with mock_client(handler) as client:
            result = await RepositoryAdapter(settings, client).fetch(repo_ref)

        assert result.error.kind == FetchErrorKind.RATE_LIMITED
        assert "GITHUB_TOKEN" in result.error.message
        assert "GITHUB_TOKEN" in result.error.to_source_error().hint

    async def test_forbidden_is_unauthorized(self, settings, repo_ref, mock_client):
        async with mock_client(lambda request: httpx.Response(403, json={"message": "Forbidden"})) as client:
            result = await RepositoryAdapter(settings, client).fetch(repo_ref)

        assert result.error.kind == FetchErrorKind.UNAUTHORIZED

    async def test_other_platforms_are_skipped(self, settings, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            result = await RepositoryAdapter(settings, client).fetch(
                RepoRef(platform=Platform.GITLAB, owner="group", repo="project")
            )

        assert result.ok
        assert result.value is None

    async def test_no_token_sends_no_authorization(self, repo_ref, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            return httpx.Response(404)

        async with mock_client(handler) as client:
            await RepositoryAdapter(Settings(), client).fetch(repo_ref)


def _vulnerability(ghsa_id: str, severity: str, **overrides) -> dict:
    node = {
        "advisory": {
            "ghsaId": ghsa_id,
            "summary": f"{ghsa_id} summary",
            "description": "details",
            "severity": severity,
            "publishedAt": "2021-02-15T00:00:00Z",
            "updatedAt": "2021-03-01T00:00:00Z",
            "withdrawnAt": None,
            "references": [{"url": f"https://nvd.nist.gov/{ghsa_id}"}],
        },
        "vulnerableVersionRange": "< 4.17.21",
        "firstPatchedVersion": {"identifier": "4.17.21"},
    }
    node["advisory"].update(overrides.pop("advisory", {}))
    node.update(overrides)
    return node


class TestAdvisoryAdapter:
    """Tests for AdvisoryAdapter."""

    async def test_fetch(self, settings, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/graphql"
            body = json.loads(request.content)
            assert body["variables"] == {"packageName": "lodash", "ecosystem": "NPM"}
            nodes = [
                _vulnerability("GHSA-aaaa", "HIGH"),
                _vulnerability(
                    "GHSA-bbbb", "SEVERE",
                    advisory={"references": [], "withdrawnAt": "2022-01-01T00:00:00Z"},
                    firstPatchedVersion=None,
                ),
            ]
            return httpx.Response(200, json={"data": {"securityVulnerabilities": {"nodes": nodes}}})

        async with mock_client(handler) as client:
            result = await AdvisoryAdapter(settings, client).fetch(PackageIdentity(name="lodash"))

        first, second = result.value
        assert first.id == "GHSA-aaaa"
        assert first.severity == Severity.HIGH
        assert first.url == "https://nvd.nist.gov/GHSA-aaaa"
        assert first.vulnerable_version_range == "< 4.17.21"
        assert first.first_patched_version == "4.17.21"
        assert not first.withdrawn

        assert second.severity == Severity.MODERATE
        assert second.url == "https://github.com/advisories/GHSA-bbbb"
        assert second.first_patched_version is None
        assert second.withdrawn

    async def test_follows_pages(self, settings, identity, mock_client):
        """Test that every page of advisories is collected."""
        cursors = []

        def handler(request: httpx.Request) -> httpx.Response:
            cursor = json.loads(request.content)["variables"].get("cursor")
            cursors.append(cursor)
            if cursor is None:
                page = {
                    "pageInfo": {"hasNextPage": True, "endCursor": "page-2"},
                    "nodes": [_vulnerability("GHSA-aaaa", "HIGH")],
                }
            else:
                page = {
                    "pageInfo": {"hasNextPage": False, "endCursor": "page-3"},
                    "nodes": [_vulnerability("GHSA-bbbb", "LOW")],
                }
            return httpx.Response(200, json={"data": {"securityVulnerabilities": page}})

        async with mock_client(handler) as client:
            result = await AdvisoryAdapter(settings, client).fetch(identity)

        assert cursors == [None, "page-2"]
        assert [a.id for a in result.value] == ["GHSA-aaaa", "GHSA-bbbb"]

    async def test_page_limit(self, settings, identity, mock_client):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            page = {
                "pageInfo": {"hasNextPage": True, "endCursor": f"after-{len(calls)}"},
                "nodes": [_vulnerability(f"GHSA-{len(calls)}", "LOW")],
            }
            return httpx.Response(200, json={"data": {"securityVulnerabilities": page}})

        async with mock_client(handler) as client:
            result = await AdvisoryAdapter(settings, client).fetch(identity)

        assert len(calls) == MAX_PAGES
        assert len(result.value) == MAX_PAGES

    async def test_graphql_rate_limit(self, settings, identity, mock_client):
        body = {"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded"}]}

        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            result = await AdvisoryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.RATE_LIMITED

    async def test_graphql_error(self, settings, identity, mock_client):
        body = {"data": None, "errors": [{"message": "Something broke"}]}

        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            result = await AdvisoryAdapter(settings, client).fetch(identity)

        assert result.error.kind == FetchErrorKind.MALFORMED
        assert result.error.message == "Something broke"

    async def test_missing_token_is_unauthorized(self, identity, mock_client):
        async with mock_client(lambda request: httpx.Response(401, json={"message": "Bad credentials"})) as client:
            result = await AdvisoryAdapter(Settings(), client).fetch(identity)

        assert result.error.kind == FetchErrorKind.UNAUTHORIZED
        assert result.error.source == "security"
