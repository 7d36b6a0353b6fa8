"""
Persistence layer for the scraper.

ScrapeStore wraps a SQLAlchemy session and exposes the handful of
operations the scraping core needs: retailer lookup, selector lists,
attempt recording, product upserts and selector statistics.
"""

import logging
import re
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func

from api.database import (
    GENERIC_DOMAIN,
    Product,
    Retailer,
    RetailerSelector,
    ScrapeAttempt,
    utc_now,
)

logger = logging.getLogger(__name__)


class ScrapeStore:
    """
    Database access for retailers, products and scrape attempts.

    Usage:
        store = ScrapeStore(db_session)
        retailer = store.get_retailer_by_domain('target.com')
        product_id = store.save_product(title='...', price=Decimal('9.99'), url='...')
    """

    def __init__(self, db_session):
        self.db = db_session

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ============================================================
    # RETAILERS
    # ============================================================

    def get_retailer_by_domain(self, domain: str) -> Optional[Retailer]:
        """Get an active retailer by exact domain."""
        return self.db.query(Retailer).filter(
            Retailer.domain == domain,
            Retailer.is_active == True,  # noqa: E712
        ).first()

    def get_retailer_by_id(self, retailer_id: int) -> Optional[Retailer]:
        return self.db.query(Retailer).filter(Retailer.id == retailer_id).first()

    def find_retailers_by_pattern(self, url: str, domain: str) -> Optional[Retailer]:
        """
        Find an active, non-generic retailer with a URL pattern matching the URL.

        Ranking: a retailer whose domain equals ``domain`` wins, then the
        longest domain, then the lowest id.

        Args:
            url: Full URL the patterns are searched against
            domain: Parsed domain of the URL (www. stripped, lowercase)

        Returns:
            Best matching Retailer or None
        """
        candidates = self.db.query(Retailer).filter(
            Retailer.is_active == True,  # noqa: E712
            Retailer.domain != GENERIC_DOMAIN,
        ).all()

        matches = []
        for retailer in candidates:
            for pattern in retailer.url_patterns or []:
                try:
                    if re.search(pattern, url):
                        matches.append(retailer)
                        break
                except re.error as e:
                    logger.warning(f"Invalid URL pattern {pattern!r} for {retailer.domain}: {e}")

        if not matches:
            return None

        matches.sort(key=lambda r: (r.domain != domain, -len(r.domain), r.id))
        return matches[0]

    def get_retailer_selectors(self, retailer_id: int, selector_type: Optional[str] = None) -> List[RetailerSelector]:
        """Get active selector groups for a retailer, best success rate first."""
        query = self.db.query(RetailerSelector).filter(
            RetailerSelector.retailer_id == retailer_id,
            RetailerSelector.is_active == True,  # noqa: E712
        )
        if selector_type:
            query = query.filter(RetailerSelector.selector_type == selector_type)
        return query.order_by(RetailerSelector.success_rate.desc(), RetailerSelector.id.asc()).all()

    def add_retailer(
        self,
        name: str,
        domain: str,
        url_patterns: Optional[List[str]] = None,
        config: Optional[Dict[str, Any]] = None,
        price_selectors: Optional[List[str]] = None,
        title_selectors: Optional[List[str]] = None,
    ) -> int:
        """
        Add a retailer together with its price/title selector groups.

        Returns:
            New retailer id
        """
        retailer = Retailer(
            name=name,
            domain=domain.lower(),
            url_patterns=list(url_patterns or []),
            config=dict(config or {}),
            is_active=True,
        )
        if price_selectors:
            retailer.selectors.append(RetailerSelector(selector_type='price', selectors=list(price_selectors)))
        if title_selectors:
            retailer.selectors.append(RetailerSelector(selector_type='title', selectors=list(title_selectors)))

        self.db.add(retailer)
        self._commit()
        logger.info(f"Added retailer: {name} ({domain})")
        return retailer.id

    def list_retailers(self) -> List[Dict[str, Any]]:
        """List active retailers with selector counts and average success rate."""
        rows = self.db.query(
            Retailer,
            func.count(RetailerSelector.id),
            func.avg(RetailerSelector.success_rate),
        ).outerjoin(
            RetailerSelector,
            (RetailerSelector.retailer_id == Retailer.id) & (RetailerSelector.is_active == True),  # noqa: E712
        ).filter(
            Retailer.is_active == True  # noqa: E712
        ).group_by(Retailer.id).order_by(Retailer.name).all()

        return [
            {
                'id': retailer.id,
                'name': retailer.name,
                'domain': retailer.domain,
                'url_patterns': retailer.url_patterns,
                'config': retailer.config,
                'selector_count': count,
                'avg_success_rate': float(avg) if avg is not None else 0.0,
            }
            for retailer, count, avg in rows
        ]

    def update_selector_stats(self, retailer_id: int, selector_type: str, success: bool):
        """
        Bump the rolling counters of a retailer's selector groups of one type.

        success_rate = successful_attempts * 100 / total_attempts
        """
        groups = self.db.query(RetailerSelector).filter(
            RetailerSelector.retailer_id == retailer_id,
            RetailerSelector.selector_type == selector_type,
        ).all()

        now = utc_now()
        for group in groups:
            group.total_attempts = (group.total_attempts or 0) + 1
            group.successful_attempts = (group.successful_attempts or 0) + (1 if success else 0)
            rate = Decimal(group.successful_attempts * 100) / Decimal(group.total_attempts)
            group.success_rate = rate.quantize(Decimal('0.01'))
            group.last_tested = now

        self._commit()

    # ============================================================
    # PRODUCTS
    # ============================================================

    def save_product(
        self,
        title: str,
        price: Optional[Decimal],
        url: str,
        retailer_id: Optional[int] = None,
        raw_data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Upsert a product keyed by URL.

        Re-scraping an existing URL overwrites title, price, retailer and
        scraped_at instead of inserting a duplicate row.

        Returns:
            Product id
        """
        product = self.db.query(Product).filter(Product.url == url).first()
        now = utc_now()
        if product:
            product.title = title
            product.price = price
            product.retailer_id = retailer_id
            product.raw_data = raw_data
            product.scraped_at = now
        else:
            product = Product(
                title=title,
                price=price,
                url=url,
                retailer_id=retailer_id,
                raw_data=raw_data,
                scraped_at=now,
            )
            self.db.add(product)

        self._commit()
        return product.id

    def get_all_products(self, limit: Optional[int] = None) -> List[Product]:
        query = self.db.query(Product).order_by(Product.scraped_at.desc(), Product.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_product_by_url(self, url: str) -> Optional[Product]:
        return self.db.query(Product).filter(Product.url == url).first()

    # ============================================================
    # SCRAPE ATTEMPTS
    # ============================================================

    def record_scrape_attempt(
        self,
        retailer_id: Optional[int],
        url: str,
        success: bool,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
        browser_used: Optional[str] = None,
        response_time: Optional[int] = None,
        product_id: Optional[int] = None,
        selectors_tried: Optional[Dict[str, List[str]]] = None,
    ) -> int:
        """
        Append one scrape attempt record.

        Raises:
            ValueError: If a successful attempt has no browser or an error
                type is set on success / missing on failure
        """
        if success and not browser_used:
            raise ValueError("Successful scrape attempts must record the browser used")
        if success and error_type is not None:
            raise ValueError("Successful scrape attempts cannot carry an error type")
        if not success and error_type is None:
            raise ValueError("Failed scrape attempts must carry an error type")

        attempt = ScrapeAttempt(
            retailer_id=retailer_id,
            product_id=product_id,
            url=url,
            success=success,
            error_message=error_message,
            error_type=error_type,
            browser_used=browser_used,
            response_time=response_time,
            selectors_tried=selectors_tried,
        )
        self.db.add(attempt)
        self._commit()
        return attempt.id

    # ============================================================
    # ANALYTICS
    # ============================================================

    def dashboard_stats(self, days: int = 7) -> Dict[str, Any]:
        """Overview numbers for the dashboard."""
        since = utc_now() - timedelta(days=days)

        total_products = self.db.query(func.count(Product.id)).scalar() or 0
        active_retailers = self.db.query(func.count(Retailer.id)).filter(
            Retailer.is_active == True,  # noqa: E712
            Retailer.domain != GENERIC_DOMAIN,
        ).scalar() or 0
        recent = self.db.query(ScrapeAttempt).filter(ScrapeAttempt.attempted_at > since)
        recent_attempts = recent.count()
        recent_successes = recent.filter(ScrapeAttempt.success == True).count()  # noqa: E712

        success_rate = 0.0
        if recent_attempts:
            success_rate = round(recent_successes * 100.0 / recent_attempts, 1)

        return {
            'total_products': total_products,
            'active_retailers': active_retailers,
            'recent_attempts': recent_attempts,
            'recent_successes': recent_successes,
            'success_rate': success_rate,
        }

    def retailer_analytics(self) -> List[Dict[str, Any]]:
        """Per-retailer attempt counts, success rate, response time and error breakdown."""
        rows = self.db.query(
            Retailer.id,
            Retailer.name,
            Retailer.domain,
            func.count(ScrapeAttempt.id),
            func.sum(case((ScrapeAttempt.success == True, 1), else_=0)),  # noqa: E712
            func.avg(ScrapeAttempt.response_time),
        ).outerjoin(
            ScrapeAttempt, ScrapeAttempt.retailer_id == Retailer.id
        ).group_by(Retailer.id).order_by(Retailer.name).all()

        errors = self.db.query(
            ScrapeAttempt.retailer_id,
            ScrapeAttempt.error_type,
            func.count(ScrapeAttempt.id),
        ).filter(
            ScrapeAttempt.success == False  # noqa: E712
        ).group_by(ScrapeAttempt.retailer_id, ScrapeAttempt.error_type).all()

        breakdown: Dict[int, Dict[str, int]] = {}
        for retailer_id, error_type, count in errors:
            breakdown.setdefault(retailer_id, {})[error_type] = count

        analytics = []
        for retailer_id, name, domain, attempts, successes, avg_response in rows:
            successes = int(successes or 0)
            analytics.append({
                'retailer_id': retailer_id,
                'name': name,
                'domain': domain,
                'attempts': attempts,
                'successes': successes,
                'success_rate': round(successes * 100.0 / attempts, 1) if attempts else 0.0,
                'avg_response_time': round(float(avg_response)) if avg_response is not None else None,
                'errors': breakdown.get(retailer_id, {}),
            })
        return analytics
