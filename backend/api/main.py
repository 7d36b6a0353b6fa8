from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
import logging

from api.config import settings
from api.database import get_db, init_db, engine
from api.logging_setup import setup_logging
from api.repository import ScrapeStore
from scrapers.crawlers.browser_pool import BrowserPool
from scrapers.manager import ProductScraper
from scrapers.retailers import RetailerResolver
from pydantic import BaseModel, Field

setup_logging()

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Browser engines are shared by every scrape request and closed at shutdown
browser_pool = BrowserPool(headless=settings.scraper_headless)

# Retailer profiles resolved by any request are reused until their TTL expires
retailer_cache: Dict[str, tuple] = {}


async def cleanup_resources():
    """Clean up all resources on shutdown."""
    logger.info("Cleaning up resources...")

    try:
        logger.info("Closing browser engines...")
        await asyncio.wait_for(browser_pool.close_all(), timeout=10.0)
    except asyncio.TimeoutError:
        logger.warning("Browser cleanup timed out")
    except Exception as e:
        logger.warning(f"Error closing browser engines: {e}")

    try:
        logger.info("Closing database connections...")
        engine.dispose(close=True)
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")

    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info("Pricey Backend Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    init_db()
    logger.info("Database initialized successfully")
    logger.info("Backend ready to accept requests")

    yield  # Application runs here

    # Shutdown
    logger.info("=" * 60)
    logger.info("Pricey Backend Shutting Down")
    logger.info("=" * 60)

    try:
        await asyncio.wait_for(cleanup_resources(), timeout=15.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    except Exception as e:
        logger.error(f"Error during shutdown cleanup: {e}")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Pricey API",
    version=API_VERSION,
    lifespan=lifespan
)

# CORS middleware
# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for API requests and responses
class ProductResponse(BaseModel):
    id: int
    title: Optional[str]
    price: Optional[float]
    url: str
    retailer_id: Optional[int]
    scraped_at: Optional[datetime]

    class Config:
        from_attributes = True


class RetailerCreate(BaseModel):
    name: str
    domain: str
    url_patterns: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    price_selectors: List[str] = Field(default_factory=list)
    title_selectors: List[str] = Field(default_factory=list)


class ScrapeRequest(BaseModel):
    url: Optional[str] = None


class RetailerCheckRequest(BaseModel):
    url: Optional[str] = None
    expected_domain: Optional[str] = Field(None, alias="expectedDomain")

    class Config:
        populate_by_name = True


def get_scraper(db: Session = Depends(get_db)) -> ProductScraper:
    """Scraper bound to the request's session, sharing the app's browser engines."""
    store = ScrapeStore(db)
    return ProductScraper(store, resolver=get_resolver(store), pool=browser_pool)


def get_resolver(store: ScrapeStore) -> RetailerResolver:
    """Per-request resolver over the shared profile cache."""
    return RetailerResolver(store, ttl=settings.retailer_cache_ttl, cache=retailer_cache)


# API Endpoints

@app.get("/")
async def root():
    return {"message": "Pricey API", "version": API_VERSION}


@app.get("/api/dashboard")
async def get_dashboard(db: Session = Depends(get_db)):
    """Overview stats for the last 7 days"""
    return ScrapeStore(db).dashboard_stats()


@app.get("/api/products", response_model=List[ProductResponse])
async def get_products(
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum number of products"),
    db: Session = Depends(get_db)
):
    """Get scraped products, most recent first"""
    return ScrapeStore(db).get_all_products(limit=limit)


@app.get("/api/retailers")
async def get_retailers(db: Session = Depends(get_db)):
    """Get active retailers with selector stats"""
    return ScrapeStore(db).list_retailers()


@app.post("/api/retailers")
async def create_retailer(retailer: RetailerCreate, db: Session = Depends(get_db)):
    """Add a retailer with its price and title selectors"""
    store = ScrapeStore(db)
    if store.get_retailer_by_domain(retailer.domain.lower()):
        raise HTTPException(status_code=409, detail=f"Retailer for {retailer.domain} already exists")

    retailer_id = get_resolver(store).add_retailer(
        name=retailer.name,
        domain=retailer.domain,
        url_patterns=retailer.url_patterns,
        config=retailer.config,
        price_selectors=retailer.price_selectors,
        title_selectors=retailer.title_selectors,
    )
    return {"id": retailer_id, "name": retailer.name, "domain": retailer.domain.lower()}


@app.get("/api/analytics/retailers")
async def get_retailer_analytics(db: Session = Depends(get_db)):
    """Per-retailer attempt and error breakdown"""
    return ScrapeStore(db).retailer_analytics()


@app.post("/api/test-retailer")
async def check_retailer(request: RetailerCheckRequest, db: Session = Depends(get_db)):
    """Show which retailer profile a URL resolves to"""
    if not request.url:
        raise HTTPException(status_code=400, detail="URL is required")

    return get_resolver(ScrapeStore(db)).test_retailer(request.expected_domain or "auto", request.url)


@app.post("/api/scrape")
async def scrape_product(request: ScrapeRequest, scraper: ProductScraper = Depends(get_scraper)):
    """Scrape a product URL and store the result"""
    if not request.url:
        raise HTTPException(status_code=400, detail="URL is required")

    result = await scraper.scrape_product(request.url)
    if result is None:
        raise HTTPException(status_code=400, detail=f"Failed to scrape product from {request.url}")
    return result.to_dict()
