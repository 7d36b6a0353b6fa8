"""
Scrape orchestration engine for Pricey.

This module provides product title/price scraping with:
- Multi-engine failover (Safari -> Firefox -> Chrome via Playwright)
- Randomized per-attempt browser fingerprints
- Error classification and tiered exponential backoff
- Per-retailer selector chains with generic fallbacks
"""

from .base import BrowserFamily, ExtractedProduct, ProductResult, family_for_attempt
from .errors import ErrorKind, ScrapeError, ResolutionError, classify_error
from .retry import RetryPolicy
from .fingerprint import FingerprintGenerator, SessionIdentity, PatchSet
from .retailers import RetailerResolver, RetailerProfile
from .extraction import ExtractionPipeline
from .manager import ProductScraper

__all__ = [
    'BrowserFamily',
    'ExtractedProduct',
    'ProductResult',
    'family_for_attempt',
    'ErrorKind',
    'ScrapeError',
    'ResolutionError',
    'classify_error',
    'RetryPolicy',
    'FingerprintGenerator',
    'SessionIdentity',
    'PatchSet',
    'RetailerResolver',
    'RetailerProfile',
    'ExtractionPipeline',
    'ProductScraper',
]
