from pathlib import Path

from sqlalchemy import create_engine, event, Column, Integer, String, Numeric, DateTime, Boolean, Text, ForeignKey, JSON, Index
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime, timezone


def utc_now():
    """Return current UTC time (timezone-aware). Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)


Base = declarative_base()

GENERIC_DOMAIN = 'generic'

# Universal selector chains used by the generic fallback retailer
GENERIC_PRICE_SELECTORS = [
    '.ProductPricing>span',
    '[data-test="product-price"]',
    '[data-test="product-price-value"]',
    '[data-testid="price"]',
    'span[data-test*="price"]',
    'div[data-test*="price"]',
    '.h-display-xs',
    '.h-text-red',
    '.h-text-lg',
    '[class*="Price"]',
    '.price',
    '[class*="price"]',
    '[id*="price"]',
    '.a-price-whole',
    '.notranslate',
    '.our-price-1',
    '[data-fs-element="price"]',
    '.our-price',
    '.price-display',
    '.sale-price',
    '.current-price',
    '.details-our-price',
    '.section-title',
    '.variant-price',
    '.final-price-red-color',
    '.price-digit',
    '.productNameComponent',
    '[data-qaid="pdpProductPriceSale"]',
    '.priceToPay',
    '#pdpPrice',
    '[data-qa="productName"]',
    '.sales',
]

GENERIC_TITLE_SELECTORS = [
    '[data-test="product-title"]',
    'h1[data-test]',
    'h1',
    '[data-testid="product-title"]',
    '.product-title',
    '[class*="title"]',
    '#productTitle',
    '#product-title',
]

GENERIC_CONFIG = {
    'headers': {},
    'delays': {
        'navigation': 3000,  # ms
        'extraction': 2000,  # ms
    },
    'custom_scripts': [],
}


class Retailer(Base):
    __tablename__ = 'retailers'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    domain = Column(String, unique=True, nullable=False, index=True)
    url_patterns = Column(JSON, nullable=False, default=list)  # Regexes matched against full URL
    config = Column(JSON, nullable=False, default=dict)  # Headers, delays, custom settings
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    selectors = relationship("RetailerSelector", back_populates="retailer", cascade="all, delete-orphan")
    products = relationship("Product", back_populates="retailer")
    attempts = relationship("ScrapeAttempt", back_populates="retailer")


class RetailerSelector(Base):
    __tablename__ = 'retailer_selectors'

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey('retailers.id', ondelete='CASCADE'), nullable=False, index=True)

    selector_type = Column(String, nullable=False, index=True)  # 'price', 'title', ...
    selectors = Column(JSON, nullable=False, default=list)  # Fallback chain in priority order

    # Rolling statistics
    success_rate = Column(Numeric(5, 2), default=0)  # 0-100
    total_attempts = Column(Integer, default=0)
    successful_attempts = Column(Integer, default=0)
    last_tested = Column(DateTime)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utc_now)

    retailer = relationship("Retailer", back_populates="selectors")

    __table_args__ = (
        Index('ix_retailer_selectors_retailer_type', 'retailer_id', 'selector_type'),
    )


class Product(Base):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    title = Column(Text, nullable=False)
    price = Column(Numeric(10, 2))
    url = Column(String, unique=True, nullable=False, index=True)
    retailer_id = Column(Integer, ForeignKey('retailers.id'), index=True)
    raw_data = Column(JSON)  # Raw scraped data for debugging

    scraped_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    retailer = relationship("Retailer", back_populates="products")


class ScrapeAttempt(Base):
    __tablename__ = 'scrape_attempts'

    id = Column(Integer, primary_key=True)
    retailer_id = Column(Integer, ForeignKey('retailers.id'), index=True)
    product_id = Column(Integer, ForeignKey('products.id'))
    url = Column(Text, nullable=False)

    success = Column(Boolean, nullable=False, index=True)
    error_message = Column(Text)
    error_type = Column(String(50))  # 'network', 'parsing', 'bot_detection', ...
    browser_used = Column(String(20))  # 'safari', 'firefox', 'chrome'
    response_time = Column(Integer)  # milliseconds
    selectors_tried = Column(JSON)

    attempted_at = Column(DateTime, default=utc_now, index=True)

    retailer = relationship("Retailer", back_populates="attempts")


@event.listens_for(Retailer, 'before_delete')
def _protect_generic_retailer(mapper, connection, target):
    """The generic retailer is the resolver's last fallback and must always exist."""
    if target.domain == GENERIC_DOMAIN:
        raise ValueError("The generic retailer cannot be deleted")


def ensure_generic_retailer(db) -> Retailer:
    """Create the generic fallback retailer and its universal selectors if missing."""
    retailer = db.query(Retailer).filter(Retailer.domain == GENERIC_DOMAIN).first()
    if retailer:
        return retailer

    retailer = Retailer(
        name='Generic',
        domain=GENERIC_DOMAIN,
        url_patterns=['.*'],
        config=GENERIC_CONFIG,
        is_active=True,
    )
    retailer.selectors = [
        RetailerSelector(selector_type='price', selectors=list(GENERIC_PRICE_SELECTORS)),
        RetailerSelector(selector_type='title', selectors=list(GENERIC_TITLE_SELECTORS)),
    ]
    db.add(retailer)
    db.commit()
    db.refresh(retailer)
    return retailer


# Database setup - import settings for database URL
from api.config import settings

engine = create_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,    # Verify connections before use (handles stale connections)
    pool_recycle=3600,     # Recycle connections after 1 hour
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    database = engine.url.database
    if engine.url.get_backend_name() == 'sqlite' and database and database != ':memory:':
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_generic_retailer(db)
    finally:
        db.close()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
