#!/usr/bin/env python3
"""
Pricey command line

Scrape product prices and inspect the local database.

Usage:
    python3 pricey.py scrape <url> [--debug]
    python3 pricey.py list
    python3 pricey.py check <url>
    python3 pricey.py retailers
    python3 pricey.py test-retailer <domain|auto> <url>

Requires the project to be installed (pip install -e .) so that the
api and scrapers packages are importable.
"""

import argparse
import asyncio
import sys

from api.config import settings
from api.database import SessionLocal, init_db
from api.logging_setup import setup_logging
from api.repository import ScrapeStore
from scrapers.errors import ResolutionError
from scrapers.manager import ProductScraper
from scrapers.retailers import RetailerResolver


def _format_date(value):
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else 'N/A'


async def _scrape(store, url, debug):
    async with ProductScraper(store, verbose=debug) as scraper:
        return await scraper.scrape_product(url)


def cmd_scrape(db, args):
    store = ScrapeStore(db)
    print(f"Scraping product from: {args.url}")

    try:
        result = asyncio.run(_scrape(store, args.url, args.debug))
    except ResolutionError as e:
        print(f"❌ Error: {e}")
        return 1

    if result is None:
        print("❌ Failed to scrape product - could not find title or price")
        return 1

    print("✅ Product scraped successfully:")
    print(f"   Title: {result.title}")
    print(f"   Price: ${result.price}")
    print(f"   Retailer: {result.retailer_name}")
    print(f"   Browser: {result.browser_used} (attempt {result.attempts})")
    print(f"   Saved with ID: {result.product_id}")
    return 0


def cmd_list(db, args):
    products = ScrapeStore(db).get_all_products()
    if not products:
        print('No products found. Use "pricey scrape <url>" to add some!')
        return 0

    print(f"\n📦 Found {len(products)} products:\n")
    for index, product in enumerate(products, 1):
        print(f"{index}. {product.title}")
        print(f"   Price: ${product.price if product.price is not None else 'N/A'}")
        print(f"   URL: {product.url}")
        print(f"   Scraped: {_format_date(product.scraped_at)}")
        print()
    return 0


def cmd_check(db, args):
    product = ScrapeStore(db).get_product_by_url(args.url)
    if product is None:
        print("❌ Product not found in database")
        return 1

    print("✅ Product already in database:")
    print(f"   Title: {product.title}")
    print(f"   Price: ${product.price if product.price is not None else 'N/A'}")
    print(f"   Last scraped: {_format_date(product.scraped_at)}")
    return 0


def cmd_retailers(db, args):
    retailers = ScrapeStore(db).list_retailers()
    print(f"\n🏪 {len(retailers)} active retailers:\n")
    for retailer in retailers:
        print(f"{retailer['name']} ({retailer['domain']})")
        print(f"   Selector groups: {retailer['selector_count']}")
        print(f"   Avg success rate: {retailer['avg_success_rate']:.1f}%")
        print()
    return 0


def cmd_test_retailer(db, args):
    resolver = RetailerResolver(ScrapeStore(db), ttl=settings.retailer_cache_ttl)
    report = resolver.test_retailer(args.domain, args.url)
    if not report['success']:
        print(f"❌ {report['error']}")
        return 1

    print(f"✅ {args.url} resolves to {report['retailer']} ({report['domain']})")
    for selector_type, selectors in report['selectors'].items():
        print(f"   {selector_type} selectors ({len(selectors)}):")
        for selector in selectors:
            print(f"     - {selector}")
    print(f"   Config: {report['config']}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog='pricey', description='Simple product price scraper')
    parser.add_argument('--version', action='version', version='pricey 1.0.0')
    subparsers = parser.add_subparsers(dest='command', required=True)

    scrape = subparsers.add_parser('scrape', help='Scrape a product from a URL')
    scrape.add_argument('url', help='Product URL to scrape')
    scrape.add_argument('-d', '--debug', action='store_true', help='Show detailed fingerprint randomization info')
    scrape.set_defaults(func=cmd_scrape)

    listing = subparsers.add_parser('list', help='List all scraped products')
    listing.set_defaults(func=cmd_list)

    check = subparsers.add_parser('check', help='Check if a URL has been scraped before')
    check.add_argument('url', help='Product URL to check')
    check.set_defaults(func=cmd_check)

    retailers = subparsers.add_parser('retailers', help='List configured retailers')
    retailers.set_defaults(func=cmd_retailers)

    test_retailer = subparsers.add_parser('test-retailer', help='Show which retailer profile a URL resolves to')
    test_retailer.add_argument('domain', help='Expected retailer domain, or "auto"')
    test_retailer.add_argument('url', help='Product URL')
    test_retailer.set_defaults(func=cmd_test_retailer)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(level='DEBUG' if getattr(args, 'debug', False) else None)
    init_db()

    db = SessionLocal()
    try:
        return args.func(db, args)
    except Exception as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        db.close()


if __name__ == '__main__':
    sys.exit(main())
