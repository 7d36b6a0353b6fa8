"""
Tests for the extraction pipeline and its text helpers.
"""

import asyncio
from decimal import Decimal

import pytest

from scrapers.errors import ErrorKind, IncompleteDataError, classify_error
from scrapers.extraction import ExtractionPipeline
from scrapers.utils import clean_title, parse_price

from fakes import FakePage


URL = "https://shop.com/item/1"


@pytest.fixture
def pipeline():
    return ExtractionPipeline()


class TestNormalizers:
    """Test title and price post-processing."""

    @pytest.mark.parametrize("raw,expected", [
        ("$1,299.99", Decimal("1299.99")),
        ("Now 24.50 (was 30.00)", Decimal("24.50")),
        ("USD 15", Decimal("15")),
        ("  9.5 ", Decimal("9.5")),
        ("See price in cart", None),
        ("", None),
        (None, None),
    ])
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("  Desk Lamp  ", "Desk Lamp"),
        ("Desk Lamp This item is not available in your area", "Desk Lamp"),
        ("Desk Lamp this ITEM is NOT available", "Desk Lamp"),
        ("This item is not available", None),
        ("Desk\n   Lamp", "Desk Lamp"),
        (None, None),
    ])
    def test_clean_title(self, raw, expected):
        assert clean_title(raw) == expected


class TestSelectorChains:
    """Test selector walking order."""

    def test_first_matching_selector_wins(self, pipeline):
        html = """
        <h1 class="name">Lamp</h1>
        <span class="sale">$8.00</span>
        <span class="price">$10.00</span>
        """
        product = pipeline.extract_html(html, URL, [".missing", ".sale", ".price"], [".name"])

        assert product.title == "Lamp"
        assert product.price == Decimal("8.00")
        assert product.price_source == "selector"

    def test_empty_text_is_skipped(self, pipeline):
        html = '<h1 class="a">   </h1><h1 class="b">Lamp</h1><span class="price">$3</span>'
        product = pipeline.extract_html(html, URL, [".price"], [".a", ".b"])

        assert product.title == "Lamp"

    def test_invalid_selector_is_skipped(self, pipeline):
        html = '<h1>Lamp</h1><span class="price">$3</span>'
        product = pipeline.extract_html(html, URL, ["[[[", ".price"], ["h1"])

        assert product.price == Decimal("3")

    def test_price_split_across_child_elements(self, pipeline):
        """Child text nodes are joined without separators, keeping the cents."""
        html = (
            "<h1>Lamp</h1>"
            '<span data-test="product-price"><span>$</span><span>1,299</span><span>.99</span></span>'
        )
        product = pipeline.extract_html(html, URL, ['[data-test="product-price"]'], ["h1"])

        assert product.raw_price == "$1,299.99"
        assert product.price == Decimal("1299.99")

    def test_title_whitespace_collapsed(self, pipeline):
        html = "<h1>\n  Desk\n    Lamp  </h1><span class='price'>$3</span>"
        product = pipeline.extract_html(html, URL, [".price"], ["h1"])

        assert product.title == "Desk Lamp"


class TestPriceFallbacks:
    """Test structured data and script fallbacks."""

    def test_json_ld_offer_price(self, pipeline):
        html = """
        <h1>Lamp</h1>
        <script type="application/ld+json">
          {"@context": "https://schema.org", "@type": "Product", "name": "Lamp",
           "offers": {"@type": "Offer", "price": "19.99", "priceCurrency": "USD"}}
        </script>
        """
        product = pipeline.extract_html(html, URL, [".price"], ["h1"])

        assert product.price == Decimal("19.99")
        assert product.price_source == "structured_data"

    def test_json_ld_graph_with_offer_list(self, pipeline):
        html = """
        <h1>Lamp</h1>
        <script type="application/ld+json">
          {"@graph": [{"@type": "WebPage"}, {"@type": "Product", "offers": [{"price": 42}]}]}
        </script>
        """
        product = pipeline.extract_html(html, URL, [], ["h1"])

        assert product.price == Decimal("42")

    def test_invalid_json_ld_is_ignored(self, pipeline):
        html = """
        <h1>Lamp</h1>
        <script type="application/ld+json">{not json</script>
        <script>window.__STATE__ = {"current_retail": 12.49};</script>
        """
        product = pipeline.extract_html(html, URL, [], ["h1"])

        assert product.price == Decimal("12.49")
        assert product.price_source == "script"

    @pytest.mark.parametrize("script,expected", [
        ('{"price": "$1,049.00"}', Decimal("1049.00")),
        ('{"list_price": 30}', Decimal("30")),
        ('{"sale_price":"7.25"}', Decimal("7.25")),
    ])
    def test_script_patterns(self, pipeline, script, expected):
        html = f"<h1>Lamp</h1><script>var data = {script};</script>"
        product = pipeline.extract_html(html, URL, [], ["h1"])

        assert product.price == expected

    def test_first_script_with_any_price_field_wins(self, pipeline):
        """Each script is checked against every pattern before the next script."""
        html = """
        <h1>Lamp</h1>
        <script>var deal = {"sale_price": "10.00"};</script>
        <script>var item = {"price": "20.00"};</script>
        """
        product = pipeline.extract_html(html, URL, [], ["h1"])

        assert product.price == Decimal("10.00")
        assert product.price_source == "script"

    def test_selector_beats_structured_data(self, pipeline):
        html = """
        <h1>Lamp</h1><span class="price">$5.00</span>
        <script type="application/ld+json">{"offers": {"price": "9.00"}}</script>
        """
        product = pipeline.extract_html(html, URL, [".price"], ["h1"])

        assert product.price == Decimal("5.00")


class TestValidation:
    """Incomplete results always fail as parsing errors."""

    def test_missing_price_fails(self, pipeline):
        with pytest.raises(IncompleteDataError) as exc_info:
            pipeline.extract_html("<h1>Lamp</h1>", URL, [".price"], ["h1"])

        assert exc_info.value.title == "Lamp"
        assert classify_error(exc_info.value) == ErrorKind.PARSING

    def test_missing_title_fails(self, pipeline):
        with pytest.raises(IncompleteDataError):
            pipeline.extract_html('<span class="price">$3</span>', URL, [".price"], ["h1"])

    def test_unparseable_price_fails(self, pipeline):
        with pytest.raises(IncompleteDataError):
            pipeline.extract_html('<h1>Lamp</h1><span class="price">Call us</span>', URL, [".price"], ["h1"])

    def test_unavailable_only_title_fails(self, pipeline):
        html = '<h1>This item is not available</h1><span class="price">$3</span>'
        with pytest.raises(IncompleteDataError):
            pipeline.extract_html(html, URL, [".price"], ["h1"])


class TestExtractFromPage:
    """Test the async page entry point."""

    def test_extract_uses_page_content_and_url(self, pipeline):
        page = FakePage()
        page.url = URL

        product = asyncio.run(pipeline.extract(page, ['[data-test="product-price"]'], ['[data-test="product-title"]']))

        assert product.title == "Desk Lamp"
        assert product.price == Decimal("1299.99")
        assert product.url == URL
        assert page.goto_calls == []
