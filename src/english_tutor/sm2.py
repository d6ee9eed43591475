"""SM-2 spaced repetition with a short learning ladder before day-scale review."""
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from loguru import logger

from english_tutor.models import CardStatus, Quality, ReviewCard

LEARNED_INTERVAL = 21


@dataclass(frozen=True)
class SchedulerConfig:
    learning_steps: tuple[int, ...] = (1, 10)  # minutes
    graduating_interval: int = 1  # days
    easy_interval: int = 4  # days
    min_ease_factor: float = 1.3
    max_ease_factor: float = 3.0
    default_ease_factor: float = 2.5

    @classmethod
    def from_settings(cls, settings) -> "SchedulerConfig":
        return cls(
            learning_steps=tuple(settings.learning_steps),
            graduating_interval=settings.graduating_interval,
            easy_interval=settings.easy_interval,
            min_ease_factor=settings.min_ease_factor,
            max_ease_factor=settings.max_ease_factor,
        )


DEFAULT_CONFIG = SchedulerConfig()


def create_card(config: SchedulerConfig = DEFAULT_CONFIG) -> ReviewCard:
    return ReviewCard(ease_factor=config.default_ease_factor)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_ease(ease: float, config: SchedulerConfig) -> float:
    return max(config.min_ease_factor, min(config.max_ease_factor, ease))


def advance(
    card: ReviewCard,
    quality: Quality,
    now: Optional[datetime] = None,
    config: SchedulerConfig = DEFAULT_CONFIG,
) -> ReviewCard:
    """Return the card's next scheduling state after a graded answer.

    Args:
        card: Current state. Not modified.
        quality: AGAIN, HARD, GOOD or EASY. Plain ints are coerced and an
            out-of-range value raises ValueError.
        now: Review time, defaults to datetime.now().
        config: Ladder, graduation intervals and ease bounds.

    Returns:
        A new ReviewCard with last_review_at stamped to `now`.
    """
    quality = Quality(quality)
    now = now or datetime.now()
    status = CardStatus(card.status)

    if status in (CardStatus.NEW, CardStatus.LEARNING):
        updated = _advance_learning(card, quality, now, config)
    elif status in (CardStatus.REVIEW, CardStatus.LEARNED):
        updated = _advance_review(card, quality, now, config)
    else:
        raise ValueError(f"Unhandled card status: {status}")
    return replace(updated, last_review_at=now)


def _advance_learning(card: ReviewCard, quality: Quality, now: datetime, config: SchedulerConfig) -> ReviewCard:
    steps = config.learning_steps

    if quality is Quality.AGAIN:
        return replace(
            card,
            status=CardStatus.LEARNING,
            learning_step=0,
            next_review_at=now + timedelta(minutes=steps[0]),
        )

    if quality is Quality.HARD:
        step = card.learning_step if card.learning_step < len(steps) else 0
        return replace(
            card,
            status=CardStatus.LEARNING,
            next_review_at=now + timedelta(minutes=steps[step]),
        )

    if quality is Quality.GOOD:
        step = card.learning_step + 1
        if step >= len(steps):
            logger.debug("Card graduated to review after {} learning steps", step)
            return replace(
                card,
                status=CardStatus.REVIEW,
                learning_step=step,
                interval=config.graduating_interval,
                next_review_at=now + timedelta(days=config.graduating_interval),
            )
        return replace(
            card,
            status=CardStatus.LEARNING,
            learning_step=step,
            next_review_at=now + timedelta(minutes=steps[step]),
        )

    # EASY skips the rest of the ladder
    logger.debug("Card graduated early on EASY")
    return replace(
        card,
        status=CardStatus.REVIEW,
        interval=config.easy_interval,
        ease_factor=_clamp_ease(card.ease_factor + 0.15, config),
        next_review_at=now + timedelta(days=config.easy_interval),
    )


def _advance_review(card: ReviewCard, quality: Quality, now: datetime, config: SchedulerConfig) -> ReviewCard:
    if quality is Quality.AGAIN:
        # repetitions is kept on a lapse; only interval progress is lost
        logger.debug("Lapse: card back to learning (lapses={})", card.lapses + 1)
        return replace(
            card,
            status=CardStatus.LEARNING,
            lapses=card.lapses + 1,
            learning_step=0,
            interval=0,
            ease_factor=max(config.min_ease_factor, card.ease_factor - 0.2),
            next_review_at=now + timedelta(minutes=config.learning_steps[0]),
        )

    q = int(quality) + 2  # 1..3 onto SM-2's 3..5
    ease = card.ease_factor + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    ease = _clamp_ease(ease, config)

    if quality is Quality.HARD:
        interval = _round_half_up(card.interval * 1.2)
    elif quality is Quality.GOOD:
        interval = _round_half_up(card.interval * ease)
    else:
        interval = _round_half_up(card.interval * ease * 1.3)

    status = CardStatus.LEARNED if interval >= LEARNED_INTERVAL else CardStatus.REVIEW
    return replace(
        card,
        status=status,
        repetitions=card.repetitions + 1,
        ease_factor=ease,
        interval=interval,
        next_review_at=now + timedelta(days=interval),
    )


def is_due(card: ReviewCard, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return card.next_review_at is None or card.next_review_at <= now


def forecast(cards: Iterable[ReviewCard], days: int = 7, now: Optional[datetime] = None) -> dict[int, int]:
    """Number of cards falling due in each of the next `days` 24-hour windows."""
    now = now or datetime.now()
    counts = {day: 0 for day in range(days)}
    for card in cards:
        if card.next_review_at is None:
            continue
        offset = card.next_review_at - now
        if offset < timedelta(0):
            continue
        day = offset // timedelta(days=1)
        if day < days:
            counts[day] += 1
    return counts
