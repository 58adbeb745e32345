"""Deterministic quality score from the collected signals."""

from datetime import datetime

from npmvalidator.models.schemas import (
    DownloadStats,
    PopularitySignal,
    RegistryMetadata,
    RepositoryStats,
    ScoreBreakdown,
    SecuritySummary,
)


class QualityScorer:
    """Calculates a 0-100 quality score from whichever signals are present.

    Each signal awards up to 25 points (security up to 20). The overall score
    is the awarded total as a percentage of 25 points per present signal, so
    missing data is left out rather than counted as zero.

    Signals:
    - Popularity: dependents or GitHub stars, whichever tier is higher
    - Downloads: monthly download count
    - Maintenance: days since the latest version was published
    - Security: number of advisories applying to the latest version
    """

    POINTS_PER_SIGNAL = 25

    # (minimum count, points), highest first
    POPULARITY_TIERS = [
        (10_000, 25),
        (5_000, 22),
        (1_000, 18),
        (500, 14),
        (100, 10),
        (10, 6),
    ]
    POPULARITY_FLOOR = 2

    DOWNLOAD_TIERS = [
        (10_000_000, 25),
        (1_000_000, 20),
        (100_000, 15),
        (10_000, 10),
    ]
    DOWNLOAD_FLOOR = 5

    # (days since publish below, points), freshest first
    MAINTENANCE_TIERS = [
        (90, 25),
        (180, 20),
        (365, 15),
        (730, 10),
    ]
    MAINTENANCE_FLOOR = 5  # Stale packages are penalized, never dropped

    # (maximum vulnerabilities, points)
    SECURITY_TIERS = [
        (0, 20),
        (2, 15),
        (5, 10),
    ]
    SECURITY_FLOOR = 5

    def calculate(
        self,
        metadata: RegistryMetadata | None = None,
        downloads: DownloadStats | None = None,
        popularity: PopularitySignal | None = None,
        repository: RepositoryStats | None = None,
        security: SecuritySummary | None = None,
        now: datetime | None = None,
    ) -> ScoreBreakdown:
        """Calculate the score breakdown.

        Args:
            metadata: Registry metadata, for days since the latest publish.
            downloads: Monthly download stats.
            popularity: Search index signal with the dependents count.
            repository: GitHub stats with the star count.
            security: Applicable advisories; None if the feed was unavailable.
            now: Reference time for staleness. Required for the maintenance
                signal so that equal inputs always give equal scores.

        Returns:
            ScoreBreakdown with the overall score and per-signal points.
        """
        dependents = popularity.dependents if popularity else None
        stars = repository.stars if repository else None
        days = metadata.days_since_publish(now) if metadata and now else None

        breakdown = {
            "popularity": self._popularity_points(dependents, stars),
            "downloads": self._download_points(downloads.downloads) if downloads else None,
            "maintenance": self._maintenance_points(days) if days is not None else None,
            "security": self._security_points(security.total_count) if security else None,
        }

        present = [points for points in breakdown.values() if points is not None]
        if not present:
            overall = 0
        else:
            overall = round(sum(present) / (self.POINTS_PER_SIGNAL * len(present)) * 100)

        return ScoreBreakdown(overall=overall, **breakdown)

    def _popularity_points(self, dependents: int | None, stars: int | None) -> int | None:
        counts = [c for c in (dependents, stars) if c is not None]
        if not counts:
            return None
        return max(self._tier(count, self.POPULARITY_TIERS, self.POPULARITY_FLOOR) for count in counts)

    def _download_points(self, monthly: int) -> int:
        return self._tier(monthly, self.DOWNLOAD_TIERS, self.DOWNLOAD_FLOOR)

    def _maintenance_points(self, days: int) -> int:
        for limit, points in self.MAINTENANCE_TIERS:
            if days < limit:
                return points
        return self.MAINTENANCE_FLOOR

    def _security_points(self, vulnerabilities: int) -> int:
        for limit, points in self.SECURITY_TIERS:
            if vulnerabilities <= limit:
                return points
        return self.SECURITY_FLOOR

    @staticmethod
    def _tier(value: int, tiers: list[tuple[int, int]], floor: int) -> int:
        for threshold, points in tiers:
            if value >= threshold:
                return points
        return floor
