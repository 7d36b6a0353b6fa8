"""
Tests for the ScrapeStore persistence layer.
"""

from decimal import Decimal

import pytest

from api.database import Product, ScrapeAttempt


class TestRetailerLookup:
    """Test retailer lookups by domain and URL pattern."""

    def test_get_retailer_by_domain(self, store, sample_retailer):
        """Exact domain lookup returns the active retailer."""
        assert store.get_retailer_by_domain("target.com").id == sample_retailer.id
        assert store.get_retailer_by_domain("walmart.com") is None

    def test_inactive_retailer_is_ignored(self, store, db_session, sample_retailer):
        """Inactive retailers are invisible to lookups."""
        sample_retailer.is_active = False
        db_session.commit()

        assert store.get_retailer_by_domain("target.com") is None

    def test_find_by_pattern(self, store, sample_retailer):
        """A regex in url_patterns matching the full URL selects the retailer."""
        retailer = store.find_retailers_by_pattern("https://m.target.com/p/lamp/-/A-1", "m.target.com")

        assert retailer.id == sample_retailer.id

    def test_find_by_pattern_skips_generic(self, store, generic_retailer):
        """The generic '.*' pattern never matches through pattern lookup."""
        assert store.find_retailers_by_pattern("https://example.com/p/1", "example.com") is None

    def test_find_by_pattern_prefers_exact_domain_then_longest(self, store, generic_retailer):
        """Ranking: domain equality first, then longest domain."""
        store.add_retailer(name="Short", domain="ab.com", url_patterns=[r"/item/"])
        store.add_retailer(name="Longer", domain="shop.ab.com", url_patterns=[r"/item/"])
        store.add_retailer(name="Exact", domain="x.com", url_patterns=[r"/item/"])

        assert store.find_retailers_by_pattern("https://x.com/item/1", "x.com").name == "Exact"
        assert store.find_retailers_by_pattern("https://other.com/item/1", "other.com").name == "Longer"

    def test_invalid_pattern_is_skipped(self, store, generic_retailer):
        """A broken regex does not break lookup for other retailers."""
        store.add_retailer(name="Broken", domain="broken.com", url_patterns=["(unclosed"])
        store.add_retailer(name="Good", domain="good.com", url_patterns=[r"/item/"])

        assert store.find_retailers_by_pattern("https://good.com/item/1", "good.com").name == "Good"


class TestSelectors:
    """Test selector groups and their statistics."""

    def test_get_retailer_selectors_filters_by_type(self, store, sample_retailer):
        """Selector groups can be filtered by type."""
        groups = store.get_retailer_selectors(sample_retailer.id, "price")

        assert len(groups) == 1
        assert groups[0].selectors == ['[data-test="product-price"]', ".price"]
        assert len(store.get_retailer_selectors(sample_retailer.id)) == 2

    def test_update_selector_stats(self, store, sample_retailer):
        """Success rate is successful * 100 / total."""
        store.update_selector_stats(sample_retailer.id, "price", True)
        store.update_selector_stats(sample_retailer.id, "price", False)
        store.update_selector_stats(sample_retailer.id, "price", True)

        group = store.get_retailer_selectors(sample_retailer.id, "price")[0]
        assert group.total_attempts == 3
        assert group.successful_attempts == 2
        assert Decimal(group.success_rate) == Decimal("66.67")
        assert group.last_tested is not None

    def test_update_selector_stats_leaves_other_types(self, store, sample_retailer):
        """Only groups of the given type are touched."""
        store.update_selector_stats(sample_retailer.id, "price", True)

        title = store.get_retailer_selectors(sample_retailer.id, "title")[0]
        assert title.total_attempts == 0


class TestProducts:
    """Test product upserts."""

    def test_save_product_upserts_by_url(self, store, db_session, sample_retailer):
        """Saving the same URL twice keeps one row with the latest values."""
        url = "https://www.target.com/p/lamp/-/A-1"
        first_id = store.save_product("Lamp", Decimal("10.00"), url, sample_retailer.id)
        first_scraped = store.get_product_by_url(url).scraped_at
        second_id = store.save_product("Desk Lamp", Decimal("12.50"), url, sample_retailer.id)

        assert first_id == second_id
        assert db_session.query(Product).filter(Product.url == url).count() == 1
        product = store.get_product_by_url(url)
        assert product.title == "Desk Lamp"
        assert Decimal(product.price) == Decimal("12.50")
        assert product.scraped_at >= first_scraped

    def test_get_all_products_limit(self, store):
        """Limit caps the number of products returned."""
        for i in range(3):
            store.save_product(f"Item {i}", Decimal("1.00"), f"https://shop.com/item/{i}")

        assert len(store.get_all_products()) == 3
        assert len(store.get_all_products(limit=2)) == 2


class TestScrapeAttempts:
    """Test attempt recording and its invariants."""

    def test_record_success(self, store, db_session, sample_retailer):
        """A successful attempt is stored with its browser."""
        store.record_scrape_attempt(
            retailer_id=sample_retailer.id,
            url="https://target.com/p/1",
            success=True,
            browser_used="safari",
            response_time=1200,
        )

        attempt = db_session.query(ScrapeAttempt).one()
        assert attempt.success is True
        assert attempt.error_type is None
        assert attempt.browser_used == "safari"

    def test_success_requires_browser(self, store, sample_retailer):
        with pytest.raises(ValueError):
            store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/1", success=True)

    def test_success_rejects_error_type(self, store, sample_retailer):
        with pytest.raises(ValueError):
            store.record_scrape_attempt(
                sample_retailer.id, "https://target.com/p/1", success=True,
                browser_used="safari", error_type="network",
            )

    def test_failure_requires_error_type(self, store, sample_retailer):
        with pytest.raises(ValueError):
            store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/1", success=False)

    def test_failure_without_browser_is_allowed(self, store, db_session, sample_retailer):
        """Failures before a browser was chosen carry no browser."""
        store.record_scrape_attempt(
            sample_retailer.id, "https://target.com/p/1", success=False,
            error_type="unknown", error_message="boom",
        )

        assert db_session.query(ScrapeAttempt).one().browser_used is None


class TestAnalytics:
    """Test dashboard and per-retailer analytics."""

    def test_dashboard_stats(self, store, sample_retailer):
        """Counts exclude the generic retailer and compute the success rate."""
        store.save_product("Lamp", Decimal("10.00"), "https://target.com/p/1", sample_retailer.id)
        store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/1", True, browser_used="safari")
        store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/2", False, error_type="parsing")

        stats = store.dashboard_stats()

        assert stats["total_products"] == 1
        assert stats["active_retailers"] == 1
        assert stats["recent_attempts"] == 2
        assert stats["recent_successes"] == 1
        assert stats["success_rate"] == 50.0

    def test_retailer_analytics(self, store, sample_retailer):
        """Per-retailer attempts, successes and error breakdown."""
        store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/1", True,
                                    browser_used="firefox", response_time=1000)
        store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/2", False,
                                    error_type="bot_detection", response_time=3000)
        store.record_scrape_attempt(sample_retailer.id, "https://target.com/p/3", False,
                                    error_type="bot_detection", response_time=2000)

        rows = {row["domain"]: row for row in store.retailer_analytics()}
        target = rows["target.com"]

        assert target["attempts"] == 3
        assert target["successes"] == 1
        assert target["success_rate"] == 33.3
        assert target["avg_response_time"] == 2000
        assert target["errors"] == {"bot_detection": 2}
        assert rows["generic"]["attempts"] == 0

    def test_list_retailers(self, store, sample_retailer):
        """Active retailers are listed with selector counts."""
        retailers = {r["domain"]: r for r in store.list_retailers()}

        assert retailers["target.com"]["selector_count"] == 2
        assert retailers["generic"]["selector_count"] == 2
        assert retailers["target.com"]["avg_success_rate"] == 0.0
