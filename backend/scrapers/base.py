"""
Shared data structures for the product scraper.

This module defines the browser families, the extraction result and
the result handed back to callers of ProductScraper.scrape_product().
"""

from typing import Dict, Optional, Any
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from datetime import datetime, timezone


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    # Colors
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


class BrowserFamily(Enum):
    """Browser engines used for failover, in escalation order."""
    SAFARI = "safari"     # Playwright webkit
    FIREFOX = "firefox"   # Playwright firefox
    CHROME = "chrome"     # Playwright chromium


# Fixed escalation order: first attempt on Safari, then Firefox, then Chrome
BROWSER_ORDER = (BrowserFamily.SAFARI, BrowserFamily.FIREFOX, BrowserFamily.CHROME)


def family_for_attempt(attempt: int) -> BrowserFamily:
    """
    Browser family for an attempt index.

    Total over non-negative integers: attempts beyond the pool size
    reuse the last family.

    Raises:
        ValueError: If attempt is negative
    """
    if attempt < 0:
        raise ValueError(f"Attempt index must be >= 0 (got {attempt})")
    return BROWSER_ORDER[min(attempt, len(BROWSER_ORDER) - 1)]


@dataclass
class ExtractedProduct:
    """Validated output of the extraction pipeline."""
    title: str
    price: Decimal
    url: str
    raw_price: Optional[str] = None
    price_source: Optional[str] = None  # 'selector', 'structured_data' or 'script'


@dataclass
class ProductResult:
    """Result of a successful scrape. Title and price are always set."""
    title: str
    price: Decimal
    url: str
    retailer_id: Optional[int] = None
    retailer_name: Optional[str] = None
    browser_used: Optional[str] = None
    attempts: int = 1
    response_time_ms: Optional[int] = None
    product_id: Optional[int] = None
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'price': float(self.price),
            'url': self.url,
            'retailer_id': self.retailer_id,
            'retailer_name': self.retailer_name,
            'browser_used': self.browser_used,
            'attempts': self.attempts,
            'response_time_ms': self.response_time_ms,
            'product_id': self.product_id,
            'scraped_at': self.scraped_at.isoformat(),
        }
