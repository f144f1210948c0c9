# Application Stats Package
from .aggregator import aggregate, daily_streak
from .service import StatsService, StatsSummary

__all__ = ["aggregate", "daily_streak", "StatsService", "StatsSummary"]
