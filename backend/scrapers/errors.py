"""
Error taxonomy for product scraping.

Every failure raised during an attempt is funneled through
classify_error() before the retry policy decides what to do next.
Classification is plain keyword matching on the error message, checked
in a fixed priority order; the first kind with a matching keyword wins.
"""

import re
import traceback
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification buckets driving retry eligibility and delay."""
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    BOT_DETECTION = "bot_detection"
    NAVIGATION = "navigation"
    PARSING = "parsing"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"


# Canonical message for incomplete extraction results. Must only hit the
# parsing keywords below.
INCOMPLETE_DATA_MESSAGE = "Incomplete product data: no element matched for title or price"


class ScrapeError(Exception):
    """Base exception for scraping failures."""


class ResolutionError(ScrapeError):
    """No retailer configuration found, not even the generic fallback."""


class BlockedPageError(ScrapeError):
    """The site served a block page instead of the product."""

    def __init__(self, page_title: str):
        self.page_title = page_title
        super().__init__(f"Access blocked by site (page title: {page_title!r})")


class HttpStatusError(ScrapeError):
    """Navigation returned an HTTP error status."""

    def __init__(self, status: int):
        self.status = status
        super().__init__(f"HTTP {status} response")


class IncompleteDataError(ScrapeError):
    """Extraction found no title or no price."""

    def __init__(self, title: Optional[str] = None, price=None):
        self.title = title
        self.price = price
        super().__init__(INCOMPLETE_DATA_MESSAGE)


# Keyword sets per kind, in priority order. Matching is on the lowercased
# message. A bare "timeout" is absent from NETWORK so that
# Playwright's "Navigation timeout of Nms exceeded" lands in NAVIGATION.
ERROR_KEYWORDS = (
    (ErrorKind.NETWORK, (
        'network', 'connection', 'econnreset', 'econnrefused', 'enotfound',
        'socket hang up', 'timed out', 'request timeout',
    )),
    (ErrorKind.RATE_LIMIT, ('rate limit', 'too many requests', '429')),
    (ErrorKind.SERVER_ERROR, ('500', '502', '503', '504', 'server error')),
    (ErrorKind.BOT_DETECTION, ('blocked', 'access denied', '403', 'cloudflare', 'captcha')),
    (ErrorKind.NAVIGATION, ('navigation', 'page.goto', 'net::', 'timeout')),
    (ErrorKind.PARSING, (
        'waiting for selector', 'element not found', 'no element', 'incomplete product data',
    )),
    (ErrorKind.CLIENT_ERROR, ('400', '401', '404', '410', 'client error')),
)

# Stack frames are only consulted for navigation: an error raised from
# inside a goto call is a navigation failure whatever its message says.
NAVIGATION_STACK_MARKERS = ('page.goto', '.goto(')


def _keyword_pattern(keywords):
    # Status codes must stand alone: "15000ms" is not a 500
    parts = [rf"\b{kw}\b" if kw.isdigit() else re.escape(kw) for kw in keywords]
    return re.compile("|".join(parts))


KEYWORD_PATTERNS = tuple((kind, _keyword_pattern(keywords)) for kind, keywords in ERROR_KEYWORDS)


def _stack_text(error: BaseException) -> str:
    tb = getattr(error, '__traceback__', None)
    if tb is None:
        return ''
    try:
        frames = traceback.extract_tb(tb)
    except Exception:
        return ''
    return '\n'.join((frame.line or '') for frame in frames).lower()


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map a raised failure to an ErrorKind.

    Total and deterministic for a given message: never raises, and input
    that matches no keyword resolves to ErrorKind.UNKNOWN.

    Args:
        error: The exception raised by an attempt

    Returns:
        The first matching ErrorKind in priority order
    """
    try:
        message = str(error).lower()
    except Exception:
        message = ''
    stack = _stack_text(error)

    for kind, pattern in KEYWORD_PATTERNS:
        if pattern.search(message):
            return kind
        if kind is ErrorKind.NAVIGATION and any(marker in stack for marker in NAVIGATION_STACK_MARKERS):
            return kind

    return ErrorKind.UNKNOWN
