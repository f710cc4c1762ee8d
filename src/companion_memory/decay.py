"""Memory decay function.

Strength falls off in three phases measured from creation time: hourly
for the first day, daily until the end of the first week, weekly after
that. Each phase starts from the value the previous phase ended at, so the
curve is continuous. Explicit accesses and importance add a bounded boost
on top.
"""

from __future__ import annotations

from datetime import datetime

from .config import AgingConfig
from .models import FuzzinessTier

HOURS_PER_DAY = 24.0
HOURS_PER_WEEK = 7 * HOURS_PER_DAY


def base_decay(age_hours: float, config: AgingConfig) -> float:
    """Time-only decay for a memory *age_hours* old (negative ages count as 0)."""
    age = max(0.0, age_hours)
    if age < HOURS_PER_DAY:
        return config.short_term_decay_rate**age

    after_day = config.short_term_decay_rate**HOURS_PER_DAY
    if age < HOURS_PER_WEEK:
        days = (age - HOURS_PER_DAY) / HOURS_PER_DAY
        return after_day * config.medium_term_decay_rate**days

    medium_days = (HOURS_PER_WEEK - HOURS_PER_DAY) / HOURS_PER_DAY
    after_week = after_day * config.medium_term_decay_rate**medium_days
    weeks = (age - HOURS_PER_WEEK) / HOURS_PER_WEEK
    return after_week * config.long_term_decay_rate**weeks


def decay_factor(
    created_at: datetime,
    now: datetime,
    consolidation_count: int,
    importance: float,
    config: AgingConfig,
) -> float:
    """Current strength of a memory in [0, 1]."""
    age_hours = (now - created_at).total_seconds() / 3600.0
    access_bonus = min(
        config.max_access_bonus,
        max(0, consolidation_count) * config.access_strength_bonus,
    )
    importance_bonus = importance * config.importance_weight
    value = base_decay(age_hours, config) + access_bonus + importance_bonus
    return max(0.0, min(1.0, value))


def fuzziness_tier(decay: float) -> FuzzinessTier:
    if decay > 0.8:
        return FuzzinessTier.VERBATIM
    if decay > 0.7:
        return FuzzinessTier.LIGHT
    if decay > 0.5:
        return FuzzinessTier.MEDIUM
    return FuzzinessTier.HEAVY
