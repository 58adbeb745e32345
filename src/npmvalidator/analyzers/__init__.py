"""Analyzers that turn fetched package data into results."""

from npmvalidator.analyzers.advisories import is_applicable, resolve_advisories
from npmvalidator.analyzers.llm import VerdictGenerator
from npmvalidator.analyzers.pipeline import AnalysisPipeline
from npmvalidator.analyzers.scorer import QualityScorer

__all__ = [
    "AnalysisPipeline",
    "QualityScorer",
    "VerdictGenerator",
    "is_applicable",
    "resolve_advisories",
]
