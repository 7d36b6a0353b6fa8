"""
Seed retailer profiles
This script ensures the generic fallback retailer exists and adds
profiles for a few common retailers
"""
from api.database import SessionLocal, init_db
from api.repository import ScrapeStore


RETAILERS = [
    {
        "name": "Target",
        "domain": "target.com",
        "url_patterns": [r"target\.com/p/"],
        "config": {"headers": {}, "delays": {"navigation": 3000, "extraction": 2000}},
        "price_selectors": [
            '[data-test="product-price"]',
            '[data-test="product-price-value"]',
            'span[data-test*="price"]',
            '.h-display-xs',
        ],
        "title_selectors": ['[data-test="product-title"]', 'h1[data-test]', 'h1'],
    },
    {
        "name": "Amazon",
        "domain": "amazon.com",
        "url_patterns": [r"amazon\.com/.*/dp/", r"amazon\.com/dp/", r"amazon\.com/gp/product/"],
        "config": {"headers": {}, "delays": {"navigation": 4000, "extraction": 2000}},
        "price_selectors": ['.priceToPay', '.a-price .a-offscreen', '.a-price-whole', '#priceblock_ourprice'],
        "title_selectors": ['#productTitle', 'h1'],
    },
    {
        "name": "Best Buy",
        "domain": "bestbuy.com",
        "url_patterns": [r"bestbuy\.com/site/"],
        "config": {"headers": {}, "delays": {"navigation": 3000, "extraction": 1500}},
        "price_selectors": ['.priceView-customer-price span', '[data-testid="customer-price"]', '.price'],
        "title_selectors": ['.sku-title h1', 'h1'],
    },
]


def seed_retailers():
    init_db()
    db = SessionLocal()

    try:
        store = ScrapeStore(db)
        added = 0
        for retailer in RETAILERS:
            if store.get_retailer_by_domain(retailer["domain"]):
                print(f"Retailer already exists: {retailer['name']} ({retailer['domain']})")
                continue
            store.add_retailer(**retailer)
            print(f"Added retailer: {retailer['name']} ({retailer['domain']})")
            added += 1

        print(f"\nSuccessfully seeded {added} retailers")

    except Exception as e:
        print(f"Error seeding retailers: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_retailers()
