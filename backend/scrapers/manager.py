"""
Product Scraper - orchestrates one logical scrape per URL.

Resolves the retailer, then runs up to max_retries + 1 attempts through
the retry policy. Every attempt escalates to the next browser family
(Safari -> Firefox -> Chrome), uses a fresh session identity and a
longer navigation timeout. The outcome is persisted as one scrape
attempt record per call.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from api.config import settings as default_settings
from .base import BrowserFamily, Colors, ExtractedProduct, ProductResult
from .crawlers.browser_pool import BrowserPool
from .errors import BlockedPageError, ErrorKind, HttpStatusError, classify_error
from .extraction import ExtractionPipeline
from .retailers import SELECTOR_TYPES, RetailerProfile, RetailerResolver
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


# Page titles served by block pages instead of the product
BLOCK_TITLE_MARKERS = ('Access Denied', 'Blocked', '403')

CLOSE_TIMEOUT = 5.0


class ProductScraper:
    """
    Scrapes product title and price with multi-engine failover.

    Usage:
        async with ProductScraper(ScrapeStore(db)) as scraper:
            result = await scraper.scrape_product('https://www.target.com/p/...')
            if result:
                print(result.title, result.price)
    """

    def __init__(
        self,
        store,
        resolver: Optional[RetailerResolver] = None,
        pool: Optional[BrowserPool] = None,
        retry: Optional[RetryPolicy] = None,
        extraction: Optional[ExtractionPipeline] = None,
        settings=None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Initialize the scraper.

        Args:
            store: Persistence collaborator (ScrapeStore)
            resolver: Retailer resolver (defaults to one over ``store``)
            pool: Browser engine pool
            retry: Retry policy
            extraction: Extraction pipeline
            settings: Settings object (defaults to api.config.settings)
            sleep: Awaitable sleep used for page delays and backoff
            rng: Random source for human-like delays
            clock: Monotonic clock for response times
            verbose: Log fingerprint details per attempt at INFO
        """
        self.settings = settings or default_settings
        self.store = store
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self._clock = clock or time.monotonic

        self.resolver = resolver or RetailerResolver(store, ttl=self.settings.retailer_cache_ttl)
        self.pool = pool or BrowserPool(headless=self.settings.scraper_headless)
        self.retry = retry or RetryPolicy.from_settings(self.settings, sleep=self._sleep)
        self.extraction = extraction or ExtractionPipeline()
        self.verbose = self.settings.scraper_verbose if verbose is None else verbose

    async def scrape_product(self, url: str) -> Optional[ProductResult]:
        """
        Scrape one product URL.

        Returns:
            ProductResult with title and price set, or None once every
            allowed attempt has failed

        Raises:
            ResolutionError: If no retailer profile (not even generic) exists
        """
        started = self._clock()
        profile = self.resolver.resolve(url)
        price_selectors = self.resolver.selectors_for(profile, 'price')
        title_selectors = self.resolver.selectors_for(profile, 'title')
        selectors_tried = {'price': price_selectors, 'title': title_selectors}

        logger.info(Colors.cyan(f"Scraping {url} ({profile.name})"))
        if not price_selectors and not title_selectors:
            logger.warning(f"No selectors configured for {profile.name}, relying on fallbacks only")

        state: Dict[str, Any] = {'family': None, 'attempts': 0}

        async def attempt_fn(attempt: int) -> ExtractedProduct:
            family = self.pool.family_for_attempt(attempt)
            state['family'] = family
            state['attempts'] = attempt + 1
            return await self._attempt(url, profile, attempt, family, price_selectors, title_selectors)

        def on_failure(attempt: int, error: BaseException, kind: ErrorKind):
            family = state['family']
            logger.debug(f"[{family.value if family else '-'}] attempt {attempt + 1} failed [{kind.value}]: {error}")

        try:
            extracted = await self.retry.execute(attempt_fn, on_failure=on_failure)
        except Exception as e:
            kind = classify_error(e)
            family = state['family']
            self.store.record_scrape_attempt(
                retailer_id=profile.id,
                url=url,
                success=False,
                error_message=str(e),
                error_type=kind.value,
                browser_used=family.value if family else None,
                response_time=self._elapsed_ms(started),
                selectors_tried=selectors_tried,
            )
            self._update_stats(profile, False)
            logger.error(Colors.red(f"✗ Failed to scrape {url} after {state['attempts']} attempt(s) [{kind.value}]: {e}"))
            return None

        family = state['family']
        response_time = self._elapsed_ms(started)
        product_id = self.store.save_product(
            title=extracted.title,
            price=extracted.price,
            url=url,
            retailer_id=profile.id,
            raw_data={
                'raw_price': extracted.raw_price,
                'price_source': extracted.price_source,
                'browser': family.value,
                'retailer': profile.name,
            },
        )
        self.store.record_scrape_attempt(
            retailer_id=profile.id,
            url=url,
            success=True,
            browser_used=family.value,
            response_time=response_time,
            product_id=product_id,
            selectors_tried=selectors_tried,
        )
        self._update_stats(profile, True)

        logger.info(Colors.green(f"✓ {extracted.title} - ${extracted.price} via {family.value} ({response_time}ms)"))

        return ProductResult(
            title=extracted.title,
            price=extracted.price,
            url=url,
            retailer_id=profile.id,
            retailer_name=profile.name,
            browser_used=family.value,
            attempts=state['attempts'],
            response_time_ms=response_time,
            product_id=product_id,
        )

    async def _attempt(
        self,
        url: str,
        profile: RetailerProfile,
        attempt: int,
        family: BrowserFamily,
        price_selectors: List[str],
        title_selectors: List[str],
    ) -> ExtractedProduct:
        """One navigate + extract pass on one engine. Context and page are always closed."""
        browser = await self.pool.engine_for(family)
        identity = self.pool.fingerprints.generate(family)

        log = logger.info if self.verbose else logger.debug
        log(Colors.gray(f"Attempt {attempt + 1} using {family.value}"))
        log(Colors.gray(f"Fingerprint: {identity.summary()}"))

        context = None
        page = None
        try:
            context = await browser.new_context(
                **self.pool.context_options_for(family, attempt, identity, extra_headers=profile.headers)
            )
            await context.add_init_script(self.pool.fingerprint_script_for(family, attempt, identity))
            page = await context.new_page()

            timeout = self.settings.scraper_navigation_timeout + attempt * self.settings.scraper_navigation_timeout_step
            wait_until = 'domcontentloaded' if attempt == 0 else 'load'
            response = await page.goto(url, wait_until=wait_until, timeout=int(timeout * 1000))
            if response is not None and response.status >= 400:
                raise HttpStatusError(response.status)

            human_delay = self._rng.uniform(self.settings.scraper_human_delay_min, self.settings.scraper_human_delay_max)
            await self._sleep(max(human_delay, profile.delay_ms('navigation') / 1000))

            page_title = await page.title()
            if any(marker in page_title for marker in BLOCK_TITLE_MARKERS):
                raise BlockedPageError(page_title)

            extraction_delay = profile.delay_ms('extraction') / 1000
            if extraction_delay > 0:
                await self._sleep(extraction_delay)

            return await self.extraction.extract(page, price_selectors, title_selectors)
        finally:
            await self._close_quietly(page, 'page')
            await self._close_quietly(context, 'context')

    async def _close_quietly(self, resource, name: str):
        if resource is None:
            return
        try:
            await asyncio.wait_for(resource.close(), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Closing {name} timed out")
        except Exception as e:
            logger.warning(f"Error closing {name}: {e}")

    def _update_stats(self, profile: RetailerProfile, success: bool):
        for selector_type in SELECTOR_TYPES:
            self.resolver.update_selector_stats(profile.id, selector_type, success)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    async def close(self):
        """Shut down every browser engine."""
        await self.pool.close_all()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
