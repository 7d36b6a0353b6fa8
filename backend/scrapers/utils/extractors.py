"""
Data extraction utilities for scrapers.

These functions pull titles and prices out of parsed HTML: CSS selector
chains, JSON-LD product markup and inline script pattern mining.
"""

import json
import logging
import re
from typing import Any, List, Optional, Tuple

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


# Common price field names in inline script state
SCRIPT_PRICE_PATTERNS = [
    re.compile(r'"price"\s*:\s*"?\$?([0-9,]+\.?\d*)"?'),
    re.compile(r'"current_retail"\s*:\s*"?\$?([0-9,]+\.?\d*)"?'),
    re.compile(r'"list_price"\s*:\s*"?\$?([0-9,]+\.?\d*)"?'),
    re.compile(r'"sale_price"\s*:\s*"?\$?([0-9,]+\.?\d*)"?'),
]


def select_first_text(soup: BeautifulSoup, selectors: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Walk a selector chain and return the first non-empty element text.

    Invalid selectors are skipped.

    Args:
        soup: Parsed page
        selectors: CSS selectors, in priority order

    Returns:
        Tuple of (text, selector) or (None, None)
    """
    for selector in selectors:
        try:
            element = soup.select_one(selector)
        except Exception as e:
            logger.debug(f"Skipping invalid selector {selector!r}: {e}")
            continue
        if element is None:
            continue
        text = element.get_text().strip()
        if text:
            return text, selector
    return None, None


def _offer_price(node: Any) -> Optional[str]:
    """Find offers.price in a JSON-LD node (dict, list or @graph)."""
    if isinstance(node, list):
        for item in node:
            price = _offer_price(item)
            if price is not None:
                return price
        return None

    if not isinstance(node, dict):
        return None

    offers = node.get('offers')
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if isinstance(offers, dict):
        price = offers.get('price', offers.get('lowPrice'))
        if price is not None and str(price).strip():
            return str(price)

    if '@graph' in node:
        return _offer_price(node['@graph'])
    return None


def extract_structured_price(soup: BeautifulSoup) -> Optional[str]:
    """
    Offer price from embedded JSON-LD product markup.

    Returns:
        Raw price string or None
    """
    for script in soup.find_all('script', type='application/ld+json'):
        content = script.string or script.get_text()
        if not content:
            continue
        try:
            data = json.loads(content)
        except ValueError:
            continue
        price = _offer_price(data)
        if price is not None:
            return price
    return None


def extract_script_price(soup: BeautifulSoup) -> Optional[str]:
    """
    Price mined from inline script contents.

    Scripts are scanned in document order and every pattern is tried on
    a script before moving to the next one, so the first script carrying
    any price field wins.
    """
    for script in soup.find_all('script'):
        content = script.string or script.get_text()
        if not content:
            continue
        for pattern in SCRIPT_PRICE_PATTERNS:
            match = pattern.search(content)
            if match:
                return match.group(1)
    return None
