"""Data models and schemas."""

from npmvalidator.models.schemas import (
    Advisory,
    AnalysisResult,
    PackageIdentity,
    RegistryMetadata,
    SecuritySummary,
    Verdict,
)

__all__ = [
    "Advisory",
    "AnalysisResult",
    "PackageIdentity",
    "RegistryMetadata",
    "SecuritySummary",
    "Verdict",
]
