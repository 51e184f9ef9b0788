"""
Services package for the achievement challenge bot.

Sync core: identity resolution, achievement source client, award engine,
incremental sync driver and leaderboard aggregation.
"""

from .base import BaseService
from .rate_limiter import IntervalRateLimiter

__all__ = ['BaseService', 'IntervalRateLimiter']
