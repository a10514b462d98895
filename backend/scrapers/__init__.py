"""
Scrapers Package

Source acquisition for the ingestion pipeline:
- HTTP extractors with per-field strategy chains (extractors/)
- Browser navigator state machine and site workflows (navigator, workflows/)
- Source identity formats and staging keys (identity)
- Domain-keyed request pacing (rate_limiter)
"""

from .base import BaseExtractor, SourceItem
from .extractors import detect_source, get_extractor_for_url, is_valid_url
from .identity import SourceType, staging_key
from .navigator import BrowserNavigator, NavigationResult, NavigationStep

__all__ = [
    "BaseExtractor",
    "SourceItem",
    "SourceType",
    "staging_key",
    "detect_source",
    "get_extractor_for_url",
    "is_valid_url",
    "BrowserNavigator",
    "NavigationResult",
    "NavigationStep",
]
