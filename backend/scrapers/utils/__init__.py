"""Shared utilities for scrapers."""

from .normalizers import (
    clean_title,
    parse_price,
)
from .extractors import (
    select_first_text,
    extract_structured_price,
    extract_script_price,
)

__all__ = [
    'clean_title',
    'parse_price',
    'select_first_text',
    'extract_structured_price',
    'extract_script_price',
]
