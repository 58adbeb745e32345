"""Upstream data source adapters."""

from npmvalidator.adapters.advisories import AdvisoryAdapter
from npmvalidator.adapters.base import (
    BaseAdapter,
    FetchError,
    FetchErrorKind,
    FetchResult,
    parse_repo_url,
)
from npmvalidator.adapters.github import RepositoryAdapter
from npmvalidator.adapters.npm import DownloadsAdapter, RegistryAdapter
from npmvalidator.adapters.search import PopularityAdapter

__all__ = [
    "AdvisoryAdapter",
    "BaseAdapter",
    "DownloadsAdapter",
    "FetchError",
    "FetchErrorKind",
    "FetchResult",
    "PopularityAdapter",
    "RegistryAdapter",
    "RepositoryAdapter",
    "parse_repo_url",
]
