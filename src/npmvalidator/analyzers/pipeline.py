"""End-to-end analysis pipeline for npm packages."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from npmvalidator.adapters.advisories import AdvisoryAdapter
from npmvalidator.adapters.base import FetchError, FetchErrorKind, FetchResult, parse_repo_url
from npmvalidator.adapters.github import RepositoryAdapter
from npmvalidator.adapters.npm import DownloadsAdapter, RegistryAdapter
from npmvalidator.adapters.search import PopularityAdapter
from npmvalidator.analyzers.advisories import resolve_advisories
from npmvalidator.analyzers.llm import VerdictGenerator
from npmvalidator.analyzers.scorer import QualityScorer
from npmvalidator.config import Settings
from npmvalidator.exceptions import (
    EnrichmentUnavailableError,
    PackageNotFoundError,
    UpstreamUnavailableError,
)
from npmvalidator.models.schemas import (
    AnalysisResult,
    PackageIdentity,
    Platform,
    RegistryMetadata,
    SecuritySummary,
    SimilarPackage,
    SourceError,
    VersionSecurityReport,
)
from npmvalidator.validation import parse_package_identity
from npmvalidator.versions import parse_version

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Orchestrates the analysis of a single npm package.

    Pipeline stages:
    1. Validate the package name (no network access on failure)
    2. Fetch registry metadata; this is the only mandatory source
    3. Fetch downloads, popularity, repository stats and advisories concurrently;
       each failure is recorded in the error map and never stops the others
    4. Resolve advisories against the latest version and calculate the score
    5. Optionally ask the AI providers for a verdict

    Usage:
        async with AnalysisPipeline(Settings.from_env()) as pipeline:
            result = await pipeline.analyze("left-pad")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        registry: RegistryAdapter | None = None,
        downloads: DownloadsAdapter | None = None,
        popularity: PopularityAdapter | None = None,
        repository: RepositoryAdapter | None = None,
        advisories: AdvisoryAdapter | None = None,
        verdicts: VerdictGenerator | None = None,
        scorer: QualityScorer | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Source URLs, credentials and timeouts.
            client: Shared httpx client for the data sources. One is created
                (and closed on exit) when not given.
            registry, downloads, popularity, repository, advisories: Source
                adapters; defaults are built from settings.
            verdicts: AI verdict generator; defaults to the provider chain
                from settings.
            scorer: Quality scorer.
        """
        self.settings = settings or Settings()
        self._owns_client = client is None
        self._http_client = client or httpx.AsyncClient(timeout=self.settings.http_timeout)

        self.registry = registry or RegistryAdapter(self.settings, self._http_client)
        self.downloads = downloads or DownloadsAdapter(self.settings, self._http_client)
        self.popularity = popularity or PopularityAdapter(self.settings, self._http_client)
        self.repository = repository or RepositoryAdapter(self.settings, self._http_client)
        self.advisories = advisories or AdvisoryAdapter(self.settings, self._http_client)
        # LLM calls use their own clients with the longer timeout
        self.verdicts = verdicts or VerdictGenerator.from_settings(self.settings)
        self.scorer = scorer or QualityScorer()

    async def __aenter__(self) -> "AnalysisPipeline":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if the pipeline created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def fetch_metadata(self, identity: PackageIdentity) -> RegistryMetadata:
        """Fetch registry metadata, the mandatory first stage.

        Raises:
            PackageNotFoundError: If the registry has no such package.
            UpstreamUnavailableError: If the registry fails for any other reason.
        """
        outcome = await self.registry.fetch(identity)
        if outcome.error is not None:
            if outcome.error.kind == FetchErrorKind.NOT_FOUND:
                raise PackageNotFoundError(identity.name)
            raise UpstreamUnavailableError(outcome.error)
        return outcome.value

    async def analyze(
        self,
        raw_input: str,
        *,
        with_verdict: bool = False,
        now: datetime | None = None,
    ) -> AnalysisResult:
        """Run the full analysis for the package named in ``raw_input``.

        Args:
            raw_input: User input; the first whitespace-delimited token is used.
            with_verdict: Also generate an AI verdict.
            now: Reference time for staleness scoring. Defaults to the current time.

        Returns:
            AnalysisResult. Optional source failures are listed in ``errors``.

        Raises:
            InvalidPackageNameError: If the name is not a valid npm package name.
            PackageNotFoundError: If the package does not exist.
            UpstreamUnavailableError: If the registry itself is unavailable.
        """
        identity = parse_package_identity(raw_input)
        now = now or datetime.now(timezone.utc)
        logger.info(f"Analyzing package: {identity.name}")

        # Stage 2: mandatory registry metadata
        metadata = await self.fetch_metadata(identity)

        # Stage 3: optional sources, concurrently
        branches: dict[str, Any] = {
            "downloads": self.downloads.fetch(identity),
            "popularity": self.popularity.fetch(identity),
            "security": self.advisories.fetch(identity),
        }
        repo_ref = parse_repo_url(metadata.repository_url)
        if repo_ref is not None and repo_ref.platform == Platform.GITHUB:
            branches["repository"] = self.repository.fetch(repo_ref)
        elif metadata.repository_url:
            logger.debug(f"No GitHub repository in {metadata.repository_url!r}")

        outcomes = await asyncio.gather(*branches.values(), return_exceptions=True)
        values, errors = self._partition(dict(zip(branches, outcomes)))

        # Stage 4: resolve advisories and score
        if "security" in values:
            security = resolve_advisories(values["security"] or [], metadata.version)
        else:
            security = SecuritySummary()

        score = self.scorer.calculate(
            metadata=metadata,
            downloads=values.get("downloads"),
            popularity=values.get("popularity"),
            repository=values.get("repository"),
            security=security if "security" in values else None,
            now=now,
        )

        result = AnalysisResult(
            identity=identity,
            metadata=metadata,
            downloads=values.get("downloads"),
            popularity=values.get("popularity"),
            repository=values.get("repository"),
            security=security,
            errors=errors,
            quality_score=score.overall,
            score=score,
            analyzed_at=now,
        )

        # Stage 5: optional AI verdict
        if with_verdict:
            result = await self._attach_verdict(result, now)

        logger.info(
            f"Analysis of {identity.name} complete: score {result.quality_score}, "
            f"{security.total_count} vulnerabilities, {len(result.errors)} source error(s)"
        )
        return result

    def _partition(
        self,
        outcomes: dict[str, FetchResult | BaseException],
    ) -> tuple[dict[str, Any], dict[str, SourceError]]:
        """Split branch outcomes into values and per-source errors."""
        values: dict[str, Any] = {}
        errors: dict[str, SourceError] = {}

        for source, outcome in outcomes.items():
            if isinstance(outcome, FetchError):
                errors[source] = outcome.to_source_error()
            elif isinstance(outcome, Exception):
                logger.warning(f"{source} fetch raised unexpectedly: {outcome!r}", exc_info=outcome)
                errors[source] = SourceError(source=source, kind="unexpected", message=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome.error is not None:
                errors[source] = outcome.error.to_source_error()
            else:
                values[source] = outcome.value

        return values, errors

    async def _attach_verdict(self, result: AnalysisResult, now: datetime) -> AnalysisResult:
        try:
            verdict = await self.verdicts.generate(result, now)
        except EnrichmentUnavailableError as e:
            logger.warning(f"AI analysis unavailable: {e}")
            ai_error = SourceError(source="ai", kind=e.kind, message=e.message)
            return result.model_copy(update={"errors": {**result.errors, "ai": ai_error}})
        except Exception as e:
            logger.warning(f"AI analysis raised unexpectedly: {e!r}", exc_info=e)
            ai_error = SourceError(source="ai", kind="unexpected", message=str(e))
            return result.model_copy(update={"errors": {**result.errors, "ai": ai_error}})
        return result.model_copy(update={"verdict": verdict})

    async def check_version(self, raw_input: str, version: str) -> VersionSecurityReport:
        """List the advisories that apply to a specific version.

        A failing advisory feed gives an empty summary with ``error`` set.

        Raises:
            InvalidPackageNameError: If the name is invalid.
            InvalidVersionError: If the version cannot be parsed.
        """
        identity = parse_package_identity(raw_input)
        version = version.strip()
        parse_version(version)

        outcome = await self.advisories.fetch(identity)
        if outcome.error is not None:
            return VersionSecurityReport(
                package=identity.name,
                version=version,
                security=SecuritySummary(),
                error=outcome.error.to_source_error(),
            )

        return VersionSecurityReport(
            package=identity.name,
            version=version,
            security=resolve_advisories(outcome.value or [], version),
        )

    async def find_similar(
        self,
        raw_input: str,
        keywords: list[str] | None = None,
        limit: int = 6,
    ) -> list[SimilarPackage]:
        """Find packages similar to the given one.

        Keywords come from the registry when not supplied.

        Raises:
            InvalidPackageNameError: If the name is invalid.
            PackageNotFoundError: If keywords were needed and the package does not exist.
            UpstreamUnavailableError: If the search index fails.
        """
        identity = parse_package_identity(raw_input)
        if not keywords:
            metadata = await self.fetch_metadata(identity)
            keywords = metadata.keywords

        try:
            return await self.popularity.search_similar(identity, keywords, limit)
        except FetchError as e:
            raise UpstreamUnavailableError(e) from e
