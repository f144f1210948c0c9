# Domain Stats Package
from .models import DateRange, DeckStats, GradeTotals, StatsReport

__all__ = ["DateRange", "GradeTotals", "DeckStats", "StatsReport"]
