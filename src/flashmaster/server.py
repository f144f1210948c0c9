import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, time as dtime, timezone

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from flashmaster.application.config import AppConfig, resolve_config
from flashmaster.application.factory import get_repository
from flashmaster.application.review_service import ReviewService
from flashmaster.application.stats import StatsService
from flashmaster.consts import VERSION
from flashmaster.domain.errors import (
    ConflictError,
    FlashmasterError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from flashmaster.domain.models import Card, Deck, Review
from flashmaster.domain.stats.models import DateRange

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("flashmaster.server")

start_time = time.time()

router = APIRouter()


# ---------------------------------------------------------------------------
# Response / request models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class DeckCreate(BaseModel):
    name: str


class DeckOut(BaseModel):
    id: str
    name: str
    created_at: datetime

    @classmethod
    def from_deck(cls, deck: Deck) -> "DeckOut":
        return cls(id=deck.id, name=deck.name, created_at=deck.created_at)


class CardCreate(BaseModel):
    deck_id: str
    front: str
    back: str
    hint: str | None = None
    tags: list[str] = Field(default_factory=list)


class CardOut(BaseModel):
    id: str
    deck_id: str
    front: str
    back: str
    hint: str | None
    tags: list[str]
    reps: int
    interval_days: int
    ef: float
    due_at: datetime
    last_grade: str | None
    last_reviewed_at: datetime | None
    suspended: bool
    created_at: datetime

    @classmethod
    def from_card(cls, card: Card) -> "CardOut":
        return cls(
            id=card.id,
            deck_id=card.deck_id,
            front=card.front,
            back=card.back,
            hint=card.hint,
            tags=list(card.tags),
            reps=card.reps,
            interval_days=card.interval_days,
            ef=card.ef,
            due_at=card.due_at,
            last_grade=card.last_grade.value if card.last_grade else None,
            last_reviewed_at=card.last_reviewed_at,
            suspended=card.suspended,
            created_at=card.created_at,
        )


class ReviewRequest(BaseModel):
    card_id: str
    # 1/2/3, h/m/e or hard/medium/easy
    grade: str | int


class ReviewOut(BaseModel):
    id: str
    card_id: str
    grade: str
    reviewed_at: datetime
    interval_applied: int
    ef_after: float

    @classmethod
    def from_review(cls, review: Review) -> "ReviewOut":
        return cls(
            id=review.id,
            card_id=review.card_id,
            grade=review.grade.value,
            reviewed_at=review.reviewed_at,
            interval_applied=review.interval_applied,
            ef_after=review.ef_after,
        )


class ReviewResponse(BaseModel):
    card: CardOut
    review: ReviewOut


class DeckStatsOut(BaseModel):
    deck_id: str
    reviews: int
    accuracy: float | None
    due: int
    new: int
    lapsed: int


class StatsResponse(BaseModel):
    total_reviews: int
    hard: int
    medium: int
    easy: int
    accuracy: float | None
    streak_days: int
    skipped_reviews: int
    daily: dict[str, int]
    decks: list[DeckStatsOut]


# ---------------------------------------------------------------------------
# Dependencies and error mapping
# ---------------------------------------------------------------------------


def get_service(request: Request) -> ReviewService:
    return request.app.state.service


def status_for(error: FlashmasterError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, StorageError) and error.transient:
        return 503
    return 500


async def handle_domain_error(request: Request, exc: FlashmasterError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _day_start(day: date | None) -> datetime | None:
    if day is None:
        return None
    return datetime.combine(day, dtime.min, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@router.get("/version")
async def get_version():
    return {"version": VERSION}


@router.get("/decks", response_model=list[DeckOut])
async def list_decks(service: ReviewService = Depends(get_service)):
    return [DeckOut.from_deck(d) for d in await service.repo.list_decks()]


@router.post("/decks", response_model=DeckOut, status_code=201)
async def create_deck(req: DeckCreate, service: ReviewService = Depends(get_service)):
    return DeckOut.from_deck(await service.repo.create_deck(req.name))


@router.delete("/decks/{deck_id}")
async def delete_deck(deck_id: str, service: ReviewService = Depends(get_service)):
    await service.repo.delete_deck(deck_id)
    return {"ok": True}


@router.get("/cards", response_model=list[CardOut])
async def list_cards(
    deck_id: str | None = None,
    q: str | None = None,
    tag: str | None = None,
    service: ReviewService = Depends(get_service),
):
    """List cards, optionally narrowed by deck, text (``q``) and tag."""
    if q or tag:
        cards = await service.search(text=q, tag=tag, deck_id=deck_id)
    else:
        cards = await service.repo.list_cards(deck_id)
    return [CardOut.from_card(c) for c in cards]


@router.post("/cards", response_model=CardOut, status_code=201)
async def create_card(req: CardCreate, service: ReviewService = Depends(get_service)):
    card = await service.repo.add_card(
        req.deck_id, req.front, req.back, hint=req.hint, tags=req.tags
    )
    return CardOut.from_card(card)


@router.get("/cards/{card_id}", response_model=CardOut)
async def get_card(card_id: str, service: ReviewService = Depends(get_service)):
    return CardOut.from_card(await service.repo.get_card(card_id))


@router.delete("/cards/{card_id}")
async def delete_card(card_id: str, service: ReviewService = Depends(get_service)):
    await service.repo.delete_card(card_id)
    return {"ok": True}


@router.get("/due", response_model=list[CardOut])
async def due_cards(
    deck_id: str | None = None,
    include_new: bool = False,
    include_lapsed: bool = False,
    tag: str | None = None,
    text: str | None = None,
    limit: int | None = None,
    service: ReviewService = Depends(get_service),
):
    cards = await service.due_queue(
        deck_id=deck_id,
        include_new=include_new,
        include_lapsed=include_lapsed,
        tag=tag,
        text=text,
        limit=limit,
    )
    return [CardOut.from_card(c) for c in cards]


@router.post("/review", response_model=ReviewResponse)
async def review_card(req: ReviewRequest, service: ReviewService = Depends(get_service)):
    """Grade one card and return its new scheduling state."""
    outcome = await service.grade_card(req.card_id, req.grade)
    return ReviewResponse(
        card=CardOut.from_card(outcome.card),
        review=ReviewOut.from_review(outcome.review),
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    deck_id: str | None = None,
    since: date | None = None,
    until: date | None = None,
    service: ReviewService = Depends(get_service),
):
    """Review statistics. ``since`` is inclusive, ``until`` exclusive (both dates, UTC)."""
    window = DateRange(start=_day_start(since), end=_day_start(until))
    summary = await StatsService(service.repo).summary(deck_id=deck_id, range=window)
    report = summary.report
    return StatsResponse(
        total_reviews=report.totals.total,
        hard=report.totals.hard,
        medium=report.totals.medium,
        easy=report.totals.easy,
        accuracy=report.accuracy,
        streak_days=summary.streak,
        skipped_reviews=report.skipped_reviews,
        daily={day.isoformat(): count for day, count in report.daily_totals.items()},
        decks=[
            DeckStatsOut(
                deck_id=owner,
                reviews=stats.total_reviews,
                accuracy=stats.accuracy,
                due=stats.due,
                new=stats.new,
                lapsed=stats.lapsed,
            )
            for owner, stats in report.per_deck.items()
        ],
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Build the API application.

    The repository is opened on startup from ``config`` (resolved from the
    environment when omitted) and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        resolved = config or resolve_config()
        logger.info(f"FlashMaster Server v{VERSION} starting up ({resolved.store} store)...")
        repo = await get_repository(resolved)
        app.state.service = ReviewService(repo)
        yield
        # Shutdown
        await repo.close()
        logger.info("FlashMaster Server shutting down...")

    app = FastAPI(
        title="FlashMaster Server",
        description="HTTP API for FlashMaster decks, cards, reviews and stats.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.add_exception_handler(FlashmasterError, handle_domain_error)
    app.include_router(router)
    return app


app = create_app()
