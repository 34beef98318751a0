"""FastAPI application entry point."""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import Response
from starlette.requests import Request

from .cache_service import PriceCacheService
from .config import get_settings
from .exceptions import (
    InvalidSymbolError,
    PersistenceError,
    PortfolioValidationError,
    PurchaseNotFoundError,
    QuoteFetchError,
)
from .market_hours import get_cache_ttl, get_market_session, is_market_open
from .metrics import calculate_portfolio_metrics
from .models import PurchaseInput, PurchaseUpdate, utc_now
from .popular_etfs import get_categories, get_etfs_by_category, search_etfs
from .portfolio_service import PortfolioService
from .price_service import PriceService, create_quote_source
from .storage import PortfolioStorage, SQLiteStore

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Investo",
    description="Track ETF purchases and portfolio performance with live market data",
    version="1.0.0",
)

# Services share one store; the SQLite file is created on first use
storage = PortfolioStorage(SQLiteStore(settings.db_path))
cache_service = PriceCacheService(storage, tz_name=settings.market_timezone)
portfolio_service = PortfolioService(storage, default_name=settings.default_portfolio_name)
price_service = PriceService(create_quote_source(settings.quote_provider), cache_service)


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _http_error(e: Exception) -> HTTPException:
    """Map tracker errors to HTTP errors."""
    if isinstance(e, PurchaseNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PortfolioValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, QuoteFetchError):
        status = 404 if e.code == "NOT_FOUND" else 502
        return HTTPException(status_code=status, detail={"error": str(e), "code": e.code})
    if isinstance(e, PersistenceError):
        logger.error(f"Storage error: {e}")
        return HTTPException(status_code=503, detail=str(e))
    logger.error(f"Unexpected error: {e}")
    return HTTPException(status_code=500, detail=str(e))


@app.on_event("startup")
async def startup_event():
    """Drop expired cache entries on startup."""
    removed = cache_service.prune_stale(timedelta(hours=settings.cache_prune_max_age_hours))
    logger.info(f"Startup complete, pruned {removed} cached prices")


@app.get("/api/portfolio")
async def get_portfolio():
    """Get the portfolio, creating it on first use."""
    try:
        return _dump(portfolio_service.get_or_create_portfolio())
    except Exception as e:
        raise _http_error(e)


@app.patch("/api/portfolio")
async def rename_portfolio(name: str = Body(..., embed=True)):
    """Rename the portfolio."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        return _dump(portfolio_service.rename_portfolio(portfolio, name))
    except Exception as e:
        raise _http_error(e)


@app.get("/api/purchases")
async def list_purchases(
    symbol: Optional[str] = Query(None, description="Only purchases of this ETF"),
):
    """List purchases, optionally for a single ETF."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        if symbol:
            purchases = portfolio_service.get_purchases_by_etf(portfolio, symbol)
        else:
            purchases = portfolio.purchases
        return {"purchases": [_dump(p) for p in purchases]}
    except Exception as e:
        raise _http_error(e)


@app.post("/api/purchases", status_code=201)
async def add_purchase(data: PurchaseInput):
    """Record a new purchase."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        updated = portfolio_service.add_purchase(portfolio, data)
        return _dump(updated.purchases[-1])
    except Exception as e:
        raise _http_error(e)


@app.put("/api/purchases/{purchase_id}")
async def update_purchase(purchase_id: str, data: PurchaseUpdate):
    """Edit an existing purchase."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        updated = portfolio_service.update_purchase(portfolio, purchase_id, data)
        return _dump(next(p for p in updated.purchases if p.id == purchase_id))
    except Exception as e:
        raise _http_error(e)


@app.delete("/api/purchases/{purchase_id}")
async def delete_purchase(purchase_id: str):
    """Delete a purchase."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        portfolio_service.delete_purchase(portfolio, purchase_id)
        return {"message": f"Deleted purchase {purchase_id}"}
    except Exception as e:
        raise _http_error(e)


@app.get("/api/metrics")
async def get_metrics():
    """Refresh prices for every held ETF and compute portfolio metrics."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        symbols = list(dict.fromkeys(p.etf_symbol for p in portfolio.purchases))
        result = await price_service.refresh(symbols)
    except Exception as e:
        raise _http_error(e)

    if result.superseded:
        raise HTTPException(status_code=409, detail="Superseded by a newer price refresh")

    # Cached entries carry the ETF display names
    cache = cache_service.get_price_cache()
    portfolio = portfolio.model_copy(update={"etf_cache": {**portfolio.etf_cache, **cache}})
    metrics = calculate_portfolio_metrics(portfolio, result.prices, utc_now())

    return {
        "metrics": _dump(metrics),
        "status": result.status.value,
        "message": result.message,
        "errors": result.errors,
        "fallbackSymbols": result.fallback_symbols,
    }


@app.get("/api/quote/{symbol}")
async def get_quote(symbol: str, prefer_cache: bool = Query(False)):
    """Get the current quote for one ETF."""
    try:
        quote = await price_service.get_quote(symbol, prefer_cache=prefer_cache)
    except InvalidSymbolError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": "INVALID_SYMBOL"})
    except Exception as e:
        raise _http_error(e)

    return {"success": True, "data": _dump(quote), "timestamp": utc_now().isoformat()}


@app.get("/api/etfs/search")
async def search(
    q: str = Query("", description="Symbol or name fragment"),
    category: Optional[str] = Query(None, description="Only ETFs in this category"),
):
    """Search the popular ETF catalogue.

    With a category and no query, every ETF in that category is listed.
    """
    if category and not q.strip():
        results = get_etfs_by_category(category)
    else:
        results = search_etfs(q)
        if category:
            results = [etf for etf in results if etf.category == category]
    return {"results": [etf._asdict() for etf in results]}


@app.get("/api/etfs/categories")
async def list_categories():
    """Categories of the popular ETF catalogue."""
    return {"categories": get_categories()}


@app.get("/api/export")
async def export_portfolio():
    """Download the portfolio as a JSON document."""
    try:
        portfolio = portfolio_service.get_or_create_portfolio()
        document = portfolio_service.export_portfolio(portfolio)
    except Exception as e:
        raise _http_error(e)

    filename = f"investo-portfolio-{utc_now().date().isoformat()}.json"
    return Response(
        content=document,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/import")
async def import_portfolio(request: Request):
    """Replace the portfolio with an exported JSON document."""
    try:
        body = await request.body()
        portfolio = portfolio_service.import_portfolio(body.decode("utf-8-sig"))
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Document encoding error. Please use UTF-8.")
    except Exception as e:
        raise _http_error(e)

    return {
        "message": f"Imported portfolio '{portfolio.name}'",
        "purchasesCount": len(portfolio.purchases),
    }


@app.post("/api/reset")
async def reset():
    """Delete the portfolio and all cached prices."""
    try:
        portfolio_service.reset()
    except Exception as e:
        raise _http_error(e)
    return {"message": "All data cleared"}


@app.get("/api/cache/stats")
async def get_cache_stats():
    """Get price cache statistics."""
    return cache_service.get_cache_stats()


@app.post("/api/cache/clear")
async def clear_cache():
    """Clear all cached prices."""
    cache_service.clear_cache()
    return {"message": "Cache cleared successfully"}


@app.post("/api/cache/prune")
async def prune_cache(
    max_age_hours: Optional[float] = Query(None, gt=0, description="Remove entries older than this"),
):
    """Remove cached prices older than the given age."""
    hours = max_age_hours if max_age_hours is not None else settings.cache_prune_max_age_hours
    removed = cache_service.prune_stale(timedelta(hours=hours))
    return {"removed": removed}


@app.get("/api/market/status")
async def market_status():
    """Current market session and the cache TTL it implies."""
    now = utc_now()
    return {
        "session": get_market_session(now, settings.market_timezone).value,
        "isOpen": is_market_open(now, settings.market_timezone),
        "ttlSeconds": int(get_cache_ttl(now, settings.market_timezone).total_seconds()),
    }
