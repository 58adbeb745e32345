"""Decide which advisories still apply to a package version."""

import logging
from datetime import datetime, timezone

from npmvalidator.models.schemas import SEVERITY_ORDER, Advisory, SecuritySummary
from npmvalidator.versions import InvalidVersionError, compare, satisfies_range

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def is_applicable(advisory: Advisory, current_version: str | None) -> bool:
    """Return True if the advisory still affects ``current_version``.

    Checks, in order:

    1. Withdrawn advisories never apply.
    2. If a first patched version is known and the current version is at or
       past it, the fix already ships and the advisory does not apply. This
       alone is enough to clear a package.
    3. Otherwise, if a vulnerable range is known, the advisory applies when
       the version falls inside it. Unparseable ranges count as inside.
    4. With neither signal the advisory applies.

    Without a current version every advisory that is not withdrawn applies.
    """
    if advisory.withdrawn:
        logger.debug(f"Skipping {advisory.id} - withdrawn")
        return False

    if not current_version:
        return True

    patched = advisory.first_patched_version
    if patched:
        try:
            if compare(current_version, patched) >= 0:
                logger.debug(
                    f"Skipping {advisory.id} - already fixed in {current_version} (patched in {patched})"
                )
                return False
        except InvalidVersionError:
            logger.debug(f"Cannot compare {current_version} with patched version {patched!r} on {advisory.id}")

    vulnerable_range = advisory.vulnerable_version_range
    if vulnerable_range:
        in_range = satisfies_range(current_version, vulnerable_range)
        if not in_range:
            logger.debug(
                f"Skipping {advisory.id} - {current_version} not in vulnerable range {vulnerable_range}"
            )
        return in_range

    return True


def resolve_advisories(advisories: list[Advisory], current_version: str | None) -> SecuritySummary:
    """Build a SecuritySummary from the advisories that apply to a version.

    Applicable advisories are ordered critical first, then newest first.
    """
    applicable = [a for a in advisories if is_applicable(a, current_version)]
    applicable.sort(
        key=lambda a: (
            SEVERITY_ORDER[a.severity],
            -(a.published_at or _EPOCH).timestamp(),
        )
    )
    return SecuritySummary(vulnerabilities=applicable)
