"""
Stats Service: application layer orchestrator.

Coordinates fetching reviews and cards from the repository and aggregating them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flashmaster.domain.ports import Repository
from flashmaster.domain.stats.models import DateRange, StatsReport

from .aggregator import aggregate, daily_streak

logger = logging.getLogger(__name__)


@dataclass
class StatsSummary:
    """Aggregation result plus the current review streak."""

    report: StatsReport
    streak: int


class StatsService:
    """
    Application service for review statistics.

    Follows Dependency Inversion: depends on the Repository abstraction,
    not concrete adapter implementations.
    """

    def __init__(self, repo: Repository):
        self._repo = repo

    async def summary(
        self,
        deck_id: str | None = None,
        range: DateRange | None = None,
        now: datetime | None = None,
    ) -> StatsSummary:
        """
        Aggregate reviews, optionally for one deck and within a time window.

        Args:
            deck_id: Restrict to cards of this deck.
            range: Half-open window over review timestamps.
            now: Evaluation time; defaults to the current time.
        """
        now = now or datetime.now(timezone.utc)
        if deck_id is not None:
            await self._repo.get_deck(deck_id)

        cards = await self._repo.list_cards(deck_id)
        cards_by_id = {card.id: card for card in cards}

        since = range.start if range else None
        until = range.end if range else None
        reviews = await self._repo.list_reviews(since=since, until=until)
        if deck_id is not None:
            reviews = [r for r in reviews if r.card_id in cards_by_id]

        report = aggregate(reviews, cards_by_id, range=range, now=now)
        streak = daily_streak(reviews, now.date())
        logger.debug(
            f"Aggregated {report.totals.total} reviews over {len(cards_by_id)} cards"
        )
        return StatsSummary(report=report, streak=streak)
