from datetime import datetime


# elapsed days, never negative (clock skew must not boost a title)
def days_since(ts: datetime, now: datetime) -> float:
    return max(0.0, (now - ts).total_seconds() / 86400.0)


# exponential half-life decay with a floor
def half_life_decay(ts: datetime, now: datetime, half_life_days: float, floor: float) -> float:
    return max(floor, 0.5 ** (days_since(ts, now) / half_life_days))
