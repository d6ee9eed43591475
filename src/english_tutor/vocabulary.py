"""Dual-mode vocabulary review sessions and vocabulary statistics."""
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from english_tutor import profile
from english_tutor.content import ContentCatalog
from english_tutor.models import CardStatus, Mode, Quality, SessionOutcome, VocabularyWord
from english_tutor.repository import CardRepository
from english_tutor.sm2 import DEFAULT_CONFIG, SchedulerConfig, advance

# Display-only: counts an answer as "correct" in the session summary.
# The scheduler itself treats HARD as a successful review.
SUMMARY_CORRECT_THRESHOLD = Quality.GOOD
SPELLING_HISTORY = 10


@dataclass
class AnswerResult:
    finished: bool
    progress: float
    next_card: Optional[VocabularyWord]


def check_spelling(user_input: str, correct: str) -> bool:
    return user_input.strip().lower() == correct.strip().lower()


def shuffle(items: list, rng: random.Random) -> None:
    """Fisher-Yates in place."""
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


class ReviewSession:
    """One learner's review session over a bounded, shuffled queue of words."""

    def __init__(
        self,
        repository: CardRepository,
        config: SchedulerConfig = DEFAULT_CONFIG,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.config = config
        self.rng = rng or random.Random()
        self.mode: Optional[Mode] = None
        self.queue: list[VocabularyWord] = []
        self.cursor = 0
        self.outcomes: list[SessionOutcome] = []
        self.started_at: Optional[datetime] = None

    def start(self, mode: Mode, limit: int = 20, now: Optional[datetime] = None) -> list[VocabularyWord]:
        now = now or datetime.now()
        mode = Mode(mode)
        due = self.repository.get_due_cards(mode, now)[:limit]
        fresh = self.repository.get_new_cards(mode, limit - len(due))
        queue = due + fresh
        shuffle(queue, self.rng)

        self.mode = mode
        self.queue = queue
        self.cursor = 0
        self.outcomes = []
        self.started_at = now
        logger.info("Started {} session: {} due, {} new", mode.value, len(due), len(fresh))
        return list(queue)

    def current_card(self) -> Optional[VocabularyWord]:
        if self.cursor >= len(self.queue):
            return None
        return self.queue[self.cursor]

    @property
    def finished(self) -> bool:
        return self.cursor >= len(self.queue)

    def submit_answer(
        self,
        quality: Quality,
        user_input: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[AnswerResult]:
        """Grade the current card. Returns None when there is no current card.

        The card and its review result are persisted together before the
        session moves on; if saving fails the session is left untouched.
        """
        word = self.current_card()
        if word is None:
            return None
        quality = Quality(quality)
        now = now or datetime.now()

        card = advance(word.card(self.mode), quality, now, self.config)
        attempts = list(word.spelling_attempts)
        if user_input is not None:
            attempts = (attempts + [check_spelling(user_input, word.word)])[-SPELLING_HISTORY:]
        updated = replace(word, spelling_attempts=attempts, **{self.mode.value: card})

        self.repository.save_answer(updated, self.mode, quality, now)

        self.queue[self.cursor] = updated
        self.outcomes.append(SessionOutcome(word=word.word, quality=quality, mode=self.mode, timestamp=now))
        self.cursor += 1
        return AnswerResult(
            finished=self.finished,
            progress=self.cursor / len(self.queue),
            next_card=self.current_card(),
        )

    def summary(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now()
        total = len(self.outcomes)
        correct = sum(1 for o in self.outcomes if o.quality >= SUMMARY_CORRECT_THRESHOLD)
        duration = (now - self.started_at).total_seconds() if self.started_at else 0.0
        return {
            "mode": self.mode.value if self.mode else None,
            "total": total,
            "correct": correct,
            "accuracy": correct / total if total else 0.0,
            "duration_seconds": duration,
            "average_seconds": duration / total if total else 0.0,
            "reviewed": [o.word for o in self.outcomes],
        }

    def finish(self, now: Optional[datetime] = None) -> dict:
        """Summarize and append the session to the learner's session log."""
        summary = self.summary(now)
        repo = self.repository
        profile.log_session(
            repo.db_path, repo.user_id, "vocabulary",
            summary["duration_seconds"], summary["accuracy"],
            details={"mode": summary["mode"], "total": summary["total"], "correct": summary["correct"]},
            now=now,
        )
        return summary


def add_word(repository: CardRepository, word: str, translation: str = "", level: str = "B1", **extra) -> Optional[VocabularyWord]:
    return repository.add_word(VocabularyWord(word=word, translation=translation, level=level, **extra))


def add_from_starter_pack(
    repository: CardRepository,
    catalog: ContentCatalog,
    level: str,
    category: Optional[str] = None,
) -> dict:
    """Copy a level's starter pack (or one category of it) into the learner's vocabulary."""
    pack = catalog.vocabulary_pack(level)
    if not pack:
        return {"success": False, "added": 0, "skipped": 0, "message": "Pack not found"}

    categories = pack.get("categories", [])
    if category:
        categories = [c for c in categories if c["name"] == category]

    added = skipped = 0
    for entry in (w for c in categories for w in c.get("words", [])):
        word = VocabularyWord(
            word=entry["word"],
            translation=entry.get("translation", ""),
            transcription=entry.get("phonetic", ""),
            examples=[entry["example"]] if entry.get("example") else [],
            level=level,
        )
        if repository.add_word(word) is None:
            skipped += 1
        else:
            added += 1
    return {"success": True, "added": added, "skipped": skipped, "message": f"Added {added} words, skipped {skipped}"}


def is_fully_learned(word: VocabularyWord) -> bool:
    return (
        word.receptive.interval >= 21
        and word.productive.interval >= 14
        and word.spelling_accuracy >= 0.8
    )


def get_stats(words: list[VocabularyWord]) -> dict:
    stats = {
        "total": len(words),
        "receptive": {s.value: 0 for s in CardStatus},
        "productive": {s.value: 0 for s in CardStatus},
        "fully_learned": 0,
        "avg_spelling_accuracy": 0.0,
    }
    spelling = []
    for word in words:
        stats["receptive"][CardStatus(word.receptive.status).value] += 1
        stats["productive"][CardStatus(word.productive.status).value] += 1
        if is_fully_learned(word):
            stats["fully_learned"] += 1
        if word.spelling_attempts:
            spelling.append(word.spelling_accuracy)
    if spelling:
        stats["avg_spelling_accuracy"] = sum(spelling) / len(spelling)
    return stats


def get_gap(words: list[VocabularyWord]) -> dict:
    """Receptive vs productive knowledge, counting review and learned cards."""
    stats = get_stats(words)
    receptive = stats["receptive"]["review"] + stats["receptive"]["learned"]
    productive = stats["productive"]["review"] + stats["productive"]["learned"]
    if receptive > productive * 1.5:
        recommendation = "Add more productive practice to activate passive vocabulary."
    else:
        recommendation = "Good balance between receptive and productive learning."
    return {"receptive": receptive, "productive": productive, "gap": receptive - productive, "recommendation": recommendation}


def get_due_counts(words: list[VocabularyWord], now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    end_of_day = datetime.combine(now.date(), datetime.min.time()) + timedelta(days=1)

    def due_before(mode: Mode, moment: datetime) -> int:
        return sum(
            1 for w in words
            if w.card(mode).next_review_at is not None and w.card(mode).next_review_at < moment
        )

    return {
        "receptive": due_before(Mode.RECEPTIVE, end_of_day),
        "productive": due_before(Mode.PRODUCTIVE, end_of_day),
        "overdue": {
            "receptive": due_before(Mode.RECEPTIVE, now),
            "productive": due_before(Mode.PRODUCTIVE, now),
        },
    }
