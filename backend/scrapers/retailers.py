"""
Retailer resolution.

Maps a product URL to the retailer profile used to scrape it: exact
domain match first, then URL pattern match, then the generic fallback.
Resolved profiles are cached per domain for a short TTL.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from api.database import GENERIC_DOMAIN
from .errors import ResolutionError

logger = logging.getLogger(__name__)


SELECTOR_TYPES = ('price', 'title')


def extract_domain(url: str) -> str:
    """
    Hostname of a URL without a leading "www.", lowercased.

    Returns 'unknown' when the URL has no parseable hostname.
    """
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        hostname = None
    if not hostname:
        return 'unknown'
    hostname = hostname.lower()
    if hostname.startswith('www.'):
        hostname = hostname[4:]
    return hostname


@dataclass
class SelectorGroup:
    id: Optional[int]
    selector_type: str
    selectors: List[str]
    success_rate: float = 0.0
    last_tested: Any = None


@dataclass
class RetailerProfile:
    """Detached snapshot of a retailer and its selector groups."""
    id: int
    name: str
    domain: str
    url_patterns: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)
    selector_groups: Dict[str, List[SelectorGroup]] = field(default_factory=dict)

    @property
    def is_generic(self) -> bool:
        return self.domain == GENERIC_DOMAIN

    def delay_ms(self, name: str) -> int:
        """Configured delay in milliseconds ('navigation' or 'extraction'), 0 if unset."""
        delays = (self.config or {}).get('delays') or {}
        try:
            return int(delays.get(name) or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def headers(self) -> Dict[str, str]:
        return dict((self.config or {}).get('headers') or {})


class RetailerResolver:
    """
    Resolves URLs to retailer profiles.

    Usage:
        resolver = RetailerResolver(ScrapeStore(db))
        profile = resolver.resolve('https://www.target.com/p/...')
        price_selectors = resolver.selectors_for(profile, 'price')
    """

    def __init__(
        self,
        store,
        ttl: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
        cache: Optional[Dict[str, tuple]] = None,
    ):
        """
        Args:
            store: Persistence collaborator (ScrapeStore)
            ttl: Cache lifetime in seconds
            clock: Monotonic clock (defaults to time.monotonic)
            cache: Profile cache to share between resolvers (domain -> (profile, stored_at)).
                Profiles are detached snapshots, so one cache may outlive many stores.
        """
        self.store = store
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._cache: Dict[str, tuple] = cache if cache is not None else {}

    def resolve(self, url: str) -> RetailerProfile:
        """
        Resolve a URL to a retailer profile.

        Raises:
            ResolutionError: If no retailer matches and the generic profile is missing
        """
        domain = extract_domain(url)

        cached = self._cache.get(domain)
        if cached is not None:
            profile, stored_at = cached
            if self._clock() - stored_at < self.ttl:
                return profile
            self._cache.pop(domain, None)

        retailer = self.store.get_retailer_by_domain(domain)
        if retailer is None:
            retailer = self.store.find_retailers_by_pattern(url, domain)
            if retailer is not None:
                logger.debug(f"Matched {domain} to {retailer.name} by URL pattern")
        if retailer is None:
            retailer = self.store.get_retailer_by_domain(GENERIC_DOMAIN)
            if retailer is not None:
                logger.debug(f"No retailer for {domain}, using generic selectors")
        if retailer is None:
            raise ResolutionError(f"No retailer configuration found for {domain} and no generic fallback exists")

        profile = self._build_profile(retailer)
        self._cache[domain] = (profile, self._clock())
        return profile

    def _build_profile(self, retailer) -> RetailerProfile:
        groups: Dict[str, List[SelectorGroup]] = {}
        for row in self.store.get_retailer_selectors(retailer.id):
            groups.setdefault(row.selector_type, []).append(SelectorGroup(
                id=row.id,
                selector_type=row.selector_type,
                selectors=list(row.selectors or []),
                success_rate=float(row.success_rate or 0),
                last_tested=row.last_tested,
            ))

        return RetailerProfile(
            id=retailer.id,
            name=retailer.name,
            domain=retailer.domain,
            url_patterns=list(retailer.url_patterns or []),
            config=dict(retailer.config or {}),
            selector_groups=groups,
        )

    @staticmethod
    def selectors_for(profile: RetailerProfile, selector_type: str) -> List[str]:
        """
        Selector list of the best group of a type.

        The group with the highest success rate wins; ties go to the
        group listed first. Returns an empty list if the type is absent.
        """
        groups = profile.selector_groups.get(selector_type) or []
        if not groups:
            return []
        best = groups[0]
        for group in groups[1:]:
            if group.success_rate > best.success_rate:
                best = group
        return list(best.selectors)

    def update_selector_stats(self, retailer_id: int, selector_type: str, success: bool):
        """Record a selector outcome. Cached profiles are left as they are."""
        self.store.update_selector_stats(retailer_id, selector_type, success)

    def add_retailer(
        self,
        name: str,
        domain: str,
        url_patterns: Optional[List[str]] = None,
        config: Optional[Dict[str, Any]] = None,
        price_selectors: Optional[List[str]] = None,
        title_selectors: Optional[List[str]] = None,
    ) -> int:
        """Add a retailer and drop any cached profile for its domain."""
        retailer_id = self.store.add_retailer(
            name=name,
            domain=domain,
            url_patterns=url_patterns,
            config=config,
            price_selectors=price_selectors,
            title_selectors=title_selectors,
        )
        self._cache.pop(domain.lower(), None)
        return retailer_id

    def test_retailer(self, domain: str, url: str) -> Dict[str, Any]:
        """
        Check which retailer a URL resolves to.

        Args:
            domain: Expected retailer domain, or "auto" to accept any match
            url: URL to resolve

        Returns:
            Dict with success flag, the resolved retailer and its winning selectors
        """
        try:
            profile = self.resolve(url)
        except ResolutionError as e:
            return {'success': False, 'error': str(e)}

        if domain != 'auto' and profile.domain != domain.lower():
            return {
                'success': False,
                'error': f"URL resolved to {profile.domain}, expected {domain}",
                'retailer': profile.name,
                'domain': profile.domain,
            }

        return {
            'success': True,
            'retailer': profile.name,
            'domain': profile.domain,
            'is_generic': profile.is_generic,
            'selectors': {t: self.selectors_for(profile, t) for t in SELECTOR_TYPES},
            'config': profile.config,
        }

    def clear_cache(self):
        self._cache.clear()
