"""
Extraction pipeline: page HTML -> validated title and price.

Order is fixed: title selectors, price selectors, JSON-LD offer price,
inline script patterns. Incomplete results always fail, even when one of
the two fields was found.
"""

import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from .base import ExtractedProduct
from .errors import IncompleteDataError
from .utils import (
    clean_title,
    extract_script_price,
    extract_structured_price,
    parse_price,
    select_first_text,
)

logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """
    Extracts product data from a loaded page.

    Usage:
        pipeline = ExtractionPipeline()
        product = await pipeline.extract(page, price_selectors, title_selectors)
    """

    def __init__(self, parser: str = 'html.parser'):
        self.parser = parser

    async def extract(
        self,
        page,
        price_selectors: List[str],
        title_selectors: List[str],
    ) -> ExtractedProduct:
        """
        Extract from a Playwright page. Read-only: only page.content() is called.

        Raises:
            IncompleteDataError: If title or price is missing
        """
        html = await page.content()
        return self.extract_html(html, page.url, price_selectors, title_selectors)

    def extract_html(
        self,
        html: str,
        url: str,
        price_selectors: List[str],
        title_selectors: List[str],
    ) -> ExtractedProduct:
        """
        Extract from raw HTML.

        Raises:
            IncompleteDataError: If title or price is missing
        """
        soup = BeautifulSoup(html or '', self.parser)

        raw_title, title_selector = select_first_text(soup, title_selectors or [])

        price_source: Optional[str] = None
        raw_price, price_selector = select_first_text(soup, price_selectors or [])
        if raw_price is not None:
            price_source = 'selector'
        else:
            raw_price = extract_structured_price(soup)
            if raw_price is not None:
                price_source = 'structured_data'
            else:
                raw_price = extract_script_price(soup)
                if raw_price is not None:
                    price_source = 'script'

        title = clean_title(raw_title)
        price = parse_price(raw_price)

        logger.debug(
            f"Extracted title via {title_selector!r}: {title!r}; "
            f"price via {price_selector or price_source!r}: {raw_price!r} -> {price}"
        )

        if title is None or price is None:
            raise IncompleteDataError(title=title, price=price)

        return ExtractedProduct(
            title=title,
            price=price,
            url=url,
            raw_price=raw_price,
            price_source=price_source,
        )
