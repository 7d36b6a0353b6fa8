"""
Data normalization utilities for scrapers.

These functions turn raw scraped strings into clean titles and prices.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional


UNAVAILABLE_SUFFIX = re.compile(r'This item is not available.*$', re.IGNORECASE | re.DOTALL)
PRICE_TOKEN = re.compile(r'\d[\d,]*(?:\.\d+)?')


def clean_title(title: Optional[str]) -> Optional[str]:
    """
    Strip the "item unavailable" boilerplate and surrounding whitespace.

    Examples:
        '  Desk Lamp  ' -> 'Desk Lamp'
        'Desk Lamp This item is not available in your area' -> 'Desk Lamp'
        'This item is not available' -> None
    """
    if not title:
        return None
    title = UNAVAILABLE_SUFFIX.sub('', title)
    title = ' '.join(title.split())
    return title or None


def parse_price(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse the first numeric token of a price string.

    Thousands separators are dropped.

    Examples:
        '$1,299.99' -> Decimal('1299.99')
        'Now 24.50 (was 30)' -> Decimal('24.50')
        'See price in cart' -> None
    """
    if raw is None:
        return None
    match = PRICE_TOKEN.search(str(raw))
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(',', ''))
    except InvalidOperation:
        return None
