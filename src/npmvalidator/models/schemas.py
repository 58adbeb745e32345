"""Pydantic models for package analysis data."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from npmvalidator.versions import InvalidVersionError, is_prerelease, parse_version

NPM_PACKAGE_URL = "https://www.npmjs.com/package"


class Platform(str, Enum):
    """Source code hosting platforms."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class PackageIdentity(BaseModel):
    """A validated npm package name."""

    model_config = ConfigDict(frozen=True)

    name: str

    @property
    def scope(self) -> str | None:
        """Scope without the leading '@', or None for unscoped packages."""
        if self.name.startswith("@") and "/" in self.name:
            return self.name[1:].split("/", 1)[0]
        return None

    @property
    def url_path(self) -> str:
        """Name as used in registry URL paths (scoped names keep '@', encode '/')."""
        return self.name.replace("/", "%2F")

    @property
    def npm_url(self) -> str:
        return f"{NPM_PACKAGE_URL}/{self.name}"


class RepoRef(BaseModel):
    """Reference to a source code repository."""

    platform: Platform
    owner: str
    repo: str

    @property
    def url(self) -> str:
        """Get the full repository URL."""
        base_urls = {
            Platform.GITHUB: "https://github.com",
            Platform.GITLAB: "https://gitlab.com",
            Platform.BITBUCKET: "https://bitbucket.org",
        }
        return f"{base_urls[self.platform]}/{self.owner}/{self.repo}"


# --- Source data ---


class RegistryMetadata(BaseModel):
    """Snapshot of the npm registry document for a package."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    license: str | None = None
    homepage: str | None = None
    repository_url: str | None = None
    keywords: list[str] = Field(default_factory=list)
    publish_times: dict[str, datetime] = Field(default_factory=dict)
    created_at: datetime | None = None
    modified_at: datetime | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    maintainers: list[str] = Field(default_factory=list)
    readme: str | None = None
    deprecated: str | None = None

    @property
    def latest_publish_time(self) -> datetime | None:
        return self.publish_times.get(self.version)

    def days_since_publish(self, now: datetime | None = None) -> int | None:
        """Whole days since the latest version was published.

        Publish dates in the future (clock skew) count as zero days.
        """
        published = self.latest_publish_time
        if published is None:
            return None
        now = now or datetime.now(timezone.utc)
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return max(0, (now - published).days)

    def stable_versions(self) -> list[str]:
        """Published versions without pre-release qualifiers, newest first."""
        stable = [v for v in self.publish_times if not is_prerelease(v)]

        def sort_key(version: str) -> tuple[int, ...]:
            try:
                return parse_version(version)
            except InvalidVersionError:
                return ()

        return sorted(stable, key=sort_key, reverse=True)


class DownloadStats(BaseModel):
    """Download count over the trailing month."""

    downloads: int = Field(ge=0)
    start: str | None = None
    end: str | None = None
    package: str | None = None


class PopularitySignal(BaseModel):
    """Popularity data from the package search index."""

    dependents: int | None = None
    quality: float = Field(ge=0, le=1)
    popularity: float = Field(ge=0, le=1)
    maintenance: float = Field(ge=0, le=1)
    final: float | None = None


class ReleaseInfo(BaseModel):
    """A GitHub release."""

    tag_name: str
    name: str | None = None
    published_at: datetime | None = None
    prerelease: bool = False
    draft: bool = False


class RepositoryStats(BaseModel):
    """GitHub repository statistics."""

    owner: str
    name: str
    description: str | None = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    pushed_at: datetime | None = None
    language: str | None = None
    is_archived: bool = False
    license: str | None = None
    releases: list[ReleaseInfo] = Field(default_factory=list)

    def days_since_push(self, now: datetime | None = None) -> int | None:
        if self.pushed_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0, (now - self.pushed_at).days)


# --- Security ---


class Severity(str, Enum):
    """Advisory severity buckets."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MODERATE: 2,
    Severity.LOW: 3,
}


class Advisory(BaseModel):
    """A published security advisory for a package."""

    id: str
    title: str = ""
    description: str = ""
    severity: Severity
    url: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None
    withdrawn_at: datetime | None = None
    vulnerable_version_range: str | None = None
    first_patched_version: str | None = None

    @property
    def withdrawn(self) -> bool:
        return self.withdrawn_at is not None


class SecuritySummary(BaseModel):
    """Advisories that apply to the analyzed version, with severity counts."""

    vulnerabilities: list[Advisory] = Field(default_factory=list)

    def _count(self, severity: Severity) -> int:
        return sum(1 for vuln in self.vulnerabilities if vuln.severity == severity)

    @computed_field
    @property
    def critical(self) -> int:
        return self._count(Severity.CRITICAL)

    @computed_field
    @property
    def high(self) -> int:
        return self._count(Severity.HIGH)

    @computed_field
    @property
    def moderate(self) -> int:
        return self._count(Severity.MODERATE)

    @computed_field
    @property
    def low(self) -> int:
        return self._count(Severity.LOW)

    @computed_field
    @property
    def total_count(self) -> int:
        return len(self.vulnerabilities)

    @computed_field
    @property
    def has_vulnerabilities(self) -> bool:
        return self.total_count > 0


# --- Errors, scores and verdicts ---


class SourceError(BaseModel):
    """A failed optional source, as recorded in the result's error map."""

    source: str
    kind: str
    message: str

    @property
    def hint(self) -> str:
        """User-facing remediation for this failure."""
        if self.kind == "not_found":
            return f"No {self.source} data exists for this package."
        if self.kind == "rate_limited":
            return (
                f"The {self.source} source is rate limited. "
                "Configure an access token (GITHUB_TOKEN) and try again."
            )
        if self.kind == "unauthorized":
            return f"The {self.source} source rejected the request. Check the configured credentials."
        if self.kind == "unconfigured":
            return "No AI provider is configured. Set GOOGLE_API_KEY or GROQ_API_KEY."
        return f"The {self.source} source is unavailable right now."


class VersionSecurityReport(BaseModel):
    """Advisories applicable to one specific version of a package."""

    package: str
    version: str
    security: SecuritySummary
    error: SourceError | None = None


class ScoreBreakdown(BaseModel):
    """Quality score and the points each signal contributed."""

    overall: int = Field(ge=0, le=100)
    popularity: int | None = None
    downloads: int | None = None
    maintenance: int | None = None
    security: int | None = None

    @property
    def signals(self) -> int:
        points = (self.popularity, self.downloads, self.maintenance, self.security)
        return sum(1 for p in points if p is not None)


class Recommendation(str, Enum):
    RECOMMENDED = "recommended"
    USE_WITH_CAUTION = "use-with-caution"
    NOT_RECOMMENDED = "not-recommended"


class Rating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class Verdict(BaseModel):
    """AI-generated assessment of a package."""

    summary: str
    recommendation: Recommendation
    strengths: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    overall_score: int = Field(ge=0, le=100)
    security_rating: Rating
    quality_rating: Rating
    maintenance_rating: Rating
    reasoning: str = ""
    model: str | None = None


class SimilarPackage(BaseModel):
    """A package related to the analyzed one."""

    name: str
    description: str = ""
    version: str = ""


# --- Final result ---


class AnalysisResult(BaseModel):
    """Complete analysis of a package."""

    model_config = ConfigDict(frozen=True)

    identity: PackageIdentity
    metadata: RegistryMetadata
    downloads: DownloadStats | None = None
    popularity: PopularitySignal | None = None
    repository: RepositoryStats | None = None
    security: SecuritySummary = Field(default_factory=SecuritySummary)
    errors: dict[str, SourceError] = Field(default_factory=dict)
    quality_score: int = Field(ge=0, le=100)
    score: ScoreBreakdown
    verdict: Verdict | None = None
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def npm_url(self) -> str:
        return self.identity.npm_url

    @property
    def days_since_last_release(self) -> int | None:
        return self.metadata.days_since_publish(self.analyzed_at)
