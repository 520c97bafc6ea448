from __future__ import annotations

from datetime import datetime

from .settings import settings


def is_night(hour: int) -> bool:
    return hour > settings.night_after_hour or hour < settings.night_before_hour


def time_of_day_score(now: datetime | None = None) -> float:
    """Deterministic night/day risk score from the wall-clock hour.

    Bands are intentionally coarse: anything after 20:59 or before 05:00
    counts as night.
    """
    moment = now if now is not None else datetime.now()
    return settings.night_score if is_night(int(moment.hour)) else settings.day_score
