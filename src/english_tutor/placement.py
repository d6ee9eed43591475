"""Adaptive placement test.

Questions rotate through the four sections. The working level moves up or
down from the learner's recent accuracy at that level, and the test stops at
the question cap or once the level has held steady long enough.
"""
import random
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Protocol

from loguru import logger

from english_tutor.models import (
    LEVELS, SECTION_ORDER, LevelAnswer, PlacementQuestion, PlacementResult, PlacementSession,
    Section, SectionResult, level_index, shift_level,
)


class QuestionBank(Protocol):
    def questions_for(self, level: str, section: Section) -> list[dict]: ...


class PlacementError(Exception):
    """Raised on operations that the session's state does not allow."""


@dataclass(frozen=True)
class PlacementConfig:
    start_level: str = "A2"
    min_questions: int = 50
    max_questions: int = 70
    stability_window: int = 10
    move_up_threshold: float = 0.7
    move_down_threshold: float = 0.4
    adapt_window: int = 5
    adapt_min_answers: int = 3
    section_pass_accuracy: float = 0.6
    section_min_attempts: int = 2
    time_limit_minutes: int = 35  # shown to the learner, not enforced

    @classmethod
    def from_settings(cls, settings) -> "PlacementConfig":
        return cls(
            start_level=settings.start_level,
            min_questions=settings.min_questions,
            max_questions=settings.max_questions,
            stability_window=settings.stability_window,
            move_up_threshold=settings.move_up_threshold,
            move_down_threshold=settings.move_down_threshold,
        )


LEVEL_ADVICE = {
    "A1": "Focus on basic vocabulary and simple grammar structures. Start with everyday words and Present Simple.",
    "A2": "Build your vocabulary and practice everyday conversations. Work on Past Simple and common phrases.",
    "B1": "Work on more complex grammar and start reading longer texts. Focus on Present Perfect and conditionals.",
    "B2": "Focus on fluency and start engaging with authentic content. Master advanced grammar structures.",
    "C1": "Refine your accuracy and work on advanced structures like inversion and subjunctive.",
}

SECTION_NAMES = {
    Section.GRAMMAR: "grammar",
    Section.VOCABULARY: "vocabulary",
    Section.READING: "reading",
    Section.LISTENING: "listening",
}


class PlacementEngine:
    """Runs one placement test session against a leveled question bank."""

    def __init__(
        self,
        bank: QuestionBank,
        config: PlacementConfig = PlacementConfig(),
        rng: Optional[random.Random] = None,
    ):
        level_index(config.start_level)
        self.bank = bank
        self.config = config
        self.rng = rng or random.Random()
        self.session: Optional[PlacementSession] = None
        self.pending: Optional[PlacementQuestion] = None
        self.exhausted = False
        self.result: Optional[PlacementResult] = None

    def start(self, now: Optional[datetime] = None) -> dict:
        self.session = PlacementSession(
            current_level=self.config.start_level,
            started_at=now or datetime.now(),
        )
        self.pending = None
        self.exhausted = False
        self.result = None
        logger.info("Placement test started at {}", self.config.start_level)
        return {
            "time_limit_minutes": self.config.time_limit_minutes,
            "estimated_questions": f"{self.config.min_questions}-{self.config.max_questions}",
            "sections": [s.value for s in SECTION_ORDER],
        }

    def _require_session(self) -> PlacementSession:
        if self.session is None:
            raise PlacementError("Placement test has not been started")
        return self.session

    def _select(self, section: Section, level: str) -> dict | None:
        used = self.session.used_question_ids
        available = [
            q for q in self.bank.questions_for(level, section)
            if f"{level}_{section.value}_{q['id']}" not in used
        ]
        if not available:
            return None
        return available[self.rng.randrange(len(available))]

    def _find(self, section: Section) -> tuple[dict, str] | None:
        """Unused question for the section at the working level, else the nearest level."""
        level = self.session.current_level
        question = self._select(section, level)
        if question:
            return question, level
        idx = level_index(level)
        for offset in (1, 2):
            for direction in (1, -1):
                alt = idx + offset * direction
                if 0 <= alt < len(LEVELS):
                    question = self._select(section, LEVELS[alt])
                    if question:
                        return question, LEVELS[alt]
        return None

    def next_question(self) -> PlacementQuestion | None:
        """The question to answer next, or None once the test should end."""
        session = self._require_session()
        if session.finished:
            return None
        if self.pending is not None:
            return self.pending
        if self.should_end():
            return None

        start = session.questions_asked % len(SECTION_ORDER)
        for step in range(len(SECTION_ORDER)):
            section = SECTION_ORDER[(start + step) % len(SECTION_ORDER)]
            found = self._find(section)
            if found:
                break
            logger.warning("No {} questions left near {}", section.value, session.current_level)
        else:
            self.exhausted = True
            return None

        raw, level = found
        qid = f"{level}_{section.value}_{raw['id']}"
        session.used_question_ids.add(qid)
        session.questions_asked += 1
        self.pending = PlacementQuestion(
            id=qid,
            section=section,
            level=level,
            question=raw.get("question") or raw.get("sentence", ""),
            options=list(raw.get("options", [])),
            correct=raw["correct"],
            text=raw.get("text") or raw.get("scenario", ""),
            number=session.questions_asked,
            explanation=raw.get("explanation", ""),
        )
        return self.pending

    def submit_answer(self, answer_index: int) -> dict:
        session = self._require_session()
        if session.finished:
            raise PlacementError("Placement test is already finished")
        question = self.pending
        if question is None:
            raise PlacementError("No question is waiting for an answer")
        if not isinstance(answer_index, int) or not 0 <= answer_index < len(question.options):
            raise ValueError(f"Answer index {answer_index!r} out of range")

        correct = answer_index == question.correct
        scores = session.section_scores[question.section]
        scores.total += 1
        scores.by_level[question.level].total += 1
        if correct:
            scores.correct += 1
            scores.by_level[question.level].correct += 1
        session.answers.append({
            "id": question.id,
            "answer": answer_index,
            "correct": correct,
            "level": question.level,
            "section": question.section,
        })
        session.level_history.append(LevelAnswer(level=question.level, correct=correct))
        self.pending = None

        self.adapt_level()
        return {
            "correct": correct,
            "correct_answer": question.correct,
            "correct_option": question.options[question.correct],
        }

    def adapt_level(self) -> None:
        """Re-evaluate the working level from the last few answers given at it."""
        session = self._require_session()
        recent = session.answers[-self.config.adapt_window:]
        if len(recent) < self.config.adapt_window:
            return
        at_level = [a for a in recent if a["level"] == session.current_level]
        if len(at_level) < self.config.adapt_min_answers:
            return
        accuracy = sum(1 for a in at_level if a["correct"]) / len(at_level)
        if accuracy >= self.config.move_up_threshold:
            new_level = shift_level(session.current_level, 1)
        elif accuracy < self.config.move_down_threshold:
            new_level = shift_level(session.current_level, -1)
        else:
            return
        if new_level != session.current_level:
            logger.debug("Placement level {} -> {} (accuracy {:.2f})", session.current_level, new_level, accuracy)
            session.current_level = new_level

    def should_end(self) -> bool:
        session = self._require_session()
        if self.exhausted or session.questions_asked >= self.config.max_questions:
            return True
        if session.questions_asked < self.config.min_questions:
            return False
        window = session.level_history[-self.config.stability_window:]
        if len(window) < self.config.stability_window:
            return False
        return len({h.level for h in window}) == 1

    def section_level(self, by_level: dict) -> str:
        """Highest level passed with enough attempts; A1 when none is."""
        determined = LEVELS[0]
        for level in LEVELS:
            score = by_level[level]
            if score.total >= self.config.section_min_attempts and score.accuracy >= self.config.section_pass_accuracy:
                determined = level
        return determined

    def finish(self, now: Optional[datetime] = None) -> PlacementResult:
        session = self._require_session()
        if self.result is not None:
            return self.result
        now = now or datetime.now()
        session.finished = True
        session.ended_at = now
        self.pending = None

        sections = {}
        for section, scores in session.section_scores.items():
            sections[section] = SectionResult(
                correct=scores.correct,
                total=scores.total,
                accuracy=scores.correct / scores.total if scores.total else 0.0,
                level=self.section_level(scores.by_level),
                by_level=scores.by_level,
            )
        overall = calculate_overall_level([r.level for r in sections.values()])
        self.result = PlacementResult(
            overall_level=overall,
            section_results=sections,
            questions_answered=len(session.answers),
            duration_seconds=(now - session.started_at).total_seconds(),
            recommendation=recommend(overall, sections),
            taken_at=now,
        )
        logger.info("Placement test finished: {} after {} answers", overall, len(session.answers))
        return self.result

    def progress(self, now: Optional[datetime] = None) -> dict:
        session = self._require_session()
        now = now or datetime.now()
        return {
            "questions_answered": len(session.answers),
            "current_level": session.current_level,
            "elapsed_seconds": (now - session.started_at).total_seconds(),
            "sections": [
                {
                    "section": section.value,
                    "answered": scores.total,
                    "accuracy": scores.correct / scores.total if scores.total else 0.0,
                }
                for section, scores in session.section_scores.items()
            ],
        }


def calculate_overall_level(section_levels: list[str]) -> str:
    """Most common section level, lower level on ties, pulled down a step when
    the weakest section trails it by two or more levels."""
    if not section_levels:
        return LEVELS[0]
    counts = Counter(section_levels)
    overall = max(LEVELS, key=lambda level: (counts.get(level, 0), -level_index(level)))
    weakest = min(section_levels, key=level_index)
    if level_index(overall) - level_index(weakest) >= 2:
        return shift_level(overall, -1)
    return overall


def recommend(level: str, sections: dict[Section, SectionResult]) -> dict:
    weakest, lowest = None, 1.0
    for section, result in sections.items():
        if result.total >= 3 and result.accuracy < lowest:
            weakest, lowest = section, result.accuracy
    weak_area = None
    if weakest is not None:
        name = SECTION_NAMES[weakest]
        weak_area = {
            "section": weakest.value,
            "accuracy": lowest,
            "suggestion": f"Pay extra attention to {name}. Your accuracy was {round(lowest * 100)}%.",
        }
    return {"level": level, "advice": LEVEL_ADVICE[level], "weak_area": weak_area}


# Top bands map onto C1, the highest level the tutor places at.
CERTIFICATE_CONVERSION = {
    "IELTS": {
        "9.0": "C1", "8.5": "C1", "8.0": "C1", "7.5": "C1",
        "7.0": "B2", "6.5": "B2", "6.0": "B2", "5.5": "B1",
        "5.0": "B1", "4.5": "A2", "4.0": "A2", "3.5": "A1",
    },
    # lower bound of each band, highest first
    "TOEFL": [(100, "C1"), (80, "B2"), (60, "B1"), (40, "A2"), (30, "A1")],
    "Cambridge": {"CPE": "C1", "CAE": "C1", "FCE": "B2", "PET": "B1", "KET": "A2"},
}
TOEFL_MAX_SCORE = 120
CERTIFICATE_MAX_AGE = timedelta(days=2 * 365)


def level_from_certificate(kind: str, score, taken_on: date, today: Optional[date] = None) -> dict:
    """Convert an IELTS band, TOEFL score or Cambridge exam into a CEFR level."""
    today = today or date.today()
    if today - taken_on > CERTIFICATE_MAX_AGE:
        return {
            "success": False,
            "suggest_test": True,
            "message": "Certificate is older than 2 years. We recommend taking the placement test.",
        }
    conversion = CERTIFICATE_CONVERSION.get(kind)
    if conversion is None:
        return {"success": False, "message": "Unknown certificate type"}

    level = None
    if kind == "IELTS":
        try:
            level = conversion.get(f"{float(score):.1f}")
        except (TypeError, ValueError):
            level = None
    elif kind == "Cambridge":
        level = conversion.get(str(score).upper())
    else:
        try:
            value = float(score)
        except (TypeError, ValueError):
            value = None
        if value is not None and value <= TOEFL_MAX_SCORE:
            level = next((lvl for low, lvl in conversion if value >= low), None)

    if level is None:
        return {"success": False, "message": "Could not convert score to CEFR level"}
    return {"success": True, "level": level, "message": f"Your level is {level} based on your {kind} score."}


def reassessment_needed(
    last_test: Optional[datetime],
    last_study: Optional[date],
    now: Optional[datetime] = None,
) -> dict:
    """Suggest a retake every 90 days, or after two weeks away."""
    now = now or datetime.now()
    if last_test is None:
        return {"needed": True, "reason": "no_test", "message": "Take the placement test to find your level."}
    if now - last_test >= timedelta(days=90):
        return {
            "needed": True,
            "reason": "periodic",
            "message": "It's been 3 months since your last assessment. Would you like to retake the test?",
        }
    if last_study is not None and (now.date() - last_study).days >= 14:
        return {
            "needed": True,
            "reason": "returning_user",
            "message": "Welcome back! It's been a while. Would you like to check your level?",
        }
    return {"needed": False}
