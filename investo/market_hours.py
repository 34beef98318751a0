"""US market session detection and the price cache TTL policy.

Sessions are computed in US Eastern time: Monday-Friday 9:30-16:00 is
MARKET_HOURS, other weekday times are AFTER_HOURS, Saturday/Sunday is CLOSED.
Market holidays are not taken into account.
"""

from datetime import datetime, time, timedelta
from typing import Optional

import pytz

from .models import MarketSession

MARKET_TIMEZONE = "US/Eastern"
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)

CACHE_TTL = {
    MarketSession.MARKET_HOURS: timedelta(minutes=5),
    MarketSession.AFTER_HOURS: timedelta(minutes=30),
    MarketSession.CLOSED: timedelta(minutes=60),
}


def to_market_time(now: Optional[datetime] = None, tz_name: str = MARKET_TIMEZONE) -> datetime:
    """Convert a timestamp to market civil time. Naive values are taken as UTC."""
    if now is None:
        now = datetime.now(pytz.utc)
    elif now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(pytz.timezone(tz_name))


def get_market_session(now: Optional[datetime] = None, tz_name: str = MARKET_TIMEZONE) -> MarketSession:
    """Return the market session in effect at ``now``."""
    local = to_market_time(now, tz_name)

    # Monday = 0 ... Sunday = 6
    if local.weekday() >= 5:
        return MarketSession.CLOSED

    if MARKET_OPEN <= local.time() < MARKET_CLOSE:
        return MarketSession.MARKET_HOURS
    return MarketSession.AFTER_HOURS


def is_market_open(now: Optional[datetime] = None, tz_name: str = MARKET_TIMEZONE) -> bool:
    return get_market_session(now, tz_name) == MarketSession.MARKET_HOURS


def get_cache_ttl(now: Optional[datetime] = None, tz_name: str = MARKET_TIMEZONE) -> timedelta:
    """How long a cached price stays fresh at ``now``."""
    return CACHE_TTL[get_market_session(now, tz_name)]
