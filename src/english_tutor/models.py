"""Data classes and closed enums for the tutor domain model."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

LEVELS = ["A1", "A2", "B1", "B2", "C1"]


def level_index(level: str) -> int:
    if level not in LEVELS:
        raise ValueError(f"Unknown CEFR level: {level!r}")
    return LEVELS.index(level)


def shift_level(level: str, steps: int) -> str:
    """Move `steps` levels up (or down when negative), stopping at the ends."""
    idx = level_index(level) + steps
    return LEVELS[max(0, min(len(LEVELS) - 1, idx))]


class Quality(IntEnum):
    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class CardStatus(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    LEARNED = "learned"


class Mode(str, Enum):
    RECEPTIVE = "receptive"    # EN -> translation
    PRODUCTIVE = "productive"  # translation -> EN


class Phase(str, Enum):
    DISCOVER = "discover"
    UNDERSTAND = "understand"
    NOTICE = "notice"
    PRACTICE = "practice"
    PRODUCE = "produce"
    INPUT_FLOOD = "input_flood"
    REVIEW = "review"


PHASE_ORDER = list(Phase)


class Section(str, Enum):
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    READING = "reading"
    LISTENING = "listening_simulation"


SECTION_ORDER = list(Section)


@dataclass
class ReviewCard:
    status: CardStatus = CardStatus.NEW
    ease_factor: float = 2.5
    interval: int = 0
    repetitions: int = 0
    lapses: int = 0
    learning_step: int = 0
    next_review_at: Optional[datetime] = None
    last_review_at: Optional[datetime] = None


@dataclass
class VocabularyWord:
    word: str
    translation: str = ""
    transcription: str = ""
    definition: str = ""
    level: str = "B1"
    examples: list[str] = field(default_factory=list)
    receptive: ReviewCard = field(default_factory=ReviewCard)
    productive: ReviewCard = field(default_factory=ReviewCard)
    spelling_attempts: list[bool] = field(default_factory=list)
    added_at: Optional[datetime] = None
    id: Optional[int] = None

    def card(self, mode: Mode) -> ReviewCard:
        return self.receptive if Mode(mode) is Mode.RECEPTIVE else self.productive

    @property
    def spelling_accuracy(self) -> float:
        if not self.spelling_attempts:
            return 0.0
        return sum(self.spelling_attempts) / len(self.spelling_attempts)


@dataclass
class SessionOutcome:
    word: str
    quality: Quality
    mode: Mode
    timestamp: datetime


@dataclass
class PracticeRecord:
    completed: bool = False
    score: float = 0.0
    attempts: int = 0


@dataclass
class ProduceRecord:
    completed: bool = False
    submissions: list[dict] = field(default_factory=list)


@dataclass
class ReviewRecord:
    accuracy: float = 0.0
    last_review_at: Optional[datetime] = None


@dataclass
class TopicProgress:
    topic_id: str
    level: str = "A1"
    discover: bool = False
    understand: bool = False
    notice: bool = False
    practice: PracticeRecord = field(default_factory=PracticeRecord)
    produce: ProduceRecord = field(default_factory=ProduceRecord)
    input_flood: int = 0
    review: ReviewRecord = field(default_factory=ReviewRecord)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    acquired: bool = False

    def phases_to_dict(self) -> dict:
        """JSON-ready phase map as stored in topic_progress.phases."""
        last = self.review.last_review_at
        return {
            "discover": self.discover,
            "understand": self.understand,
            "notice": self.notice,
            "practice": {
                "completed": self.practice.completed,
                "score": self.practice.score,
                "attempts": self.practice.attempts,
            },
            "produce": {
                "completed": self.produce.completed,
                "submissions": list(self.produce.submissions),
            },
            "input_flood": self.input_flood,
            "review": {
                "accuracy": self.review.accuracy,
                "last_review_at": last.isoformat() if last else None,
            },
        }

    def load_phases(self, phases: dict) -> None:
        self.discover = bool(phases.get("discover", False))
        self.understand = bool(phases.get("understand", False))
        self.notice = bool(phases.get("notice", False))
        practice = phases.get("practice") or {}
        self.practice = PracticeRecord(
            completed=bool(practice.get("completed", False)),
            score=float(practice.get("score", 0.0)),
            attempts=int(practice.get("attempts", 0)),
        )
        produce = phases.get("produce") or {}
        self.produce = ProduceRecord(
            completed=bool(produce.get("completed", False)),
            submissions=list(produce.get("submissions", [])),
        )
        self.input_flood = int(phases.get("input_flood", 0))
        review = phases.get("review") or {}
        last = review.get("last_review_at")
        self.review = ReviewRecord(
            accuracy=float(review.get("accuracy", 0.0)),
            last_review_at=datetime.fromisoformat(last) if last else None,
        )


@dataclass
class PlacementQuestion:
    id: str
    section: Section
    level: str
    question: str
    options: list[str]
    correct: int
    text: str = ""
    number: int = 0
    explanation: str = ""


@dataclass
class LevelScore:
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


@dataclass
class SectionScore:
    correct: int = 0
    total: int = 0
    by_level: dict[str, LevelScore] = field(
        default_factory=lambda: {level: LevelScore() for level in LEVELS}
    )


@dataclass
class LevelAnswer:
    level: str
    correct: bool


@dataclass
class PlacementSession:
    current_level: str = "A2"
    questions_asked: int = 0
    used_question_ids: set[str] = field(default_factory=set)
    section_scores: dict[Section, SectionScore] = field(
        default_factory=lambda: {section: SectionScore() for section in SECTION_ORDER}
    )
    level_history: list[LevelAnswer] = field(default_factory=list)
    answers: list[dict] = field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    finished: bool = False


@dataclass
class SectionResult:
    correct: int
    total: int
    accuracy: float
    level: str
    by_level: dict[str, LevelScore]


@dataclass
class PlacementResult:
    overall_level: str
    section_results: dict[Section, SectionResult]
    questions_answered: int
    duration_seconds: float
    recommendation: dict
    taken_at: datetime
