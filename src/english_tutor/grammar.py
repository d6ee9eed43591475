"""Seven-phase grammar acquisition: discover, understand, notice, practice,
produce, input flood, review.

The current phase is never stored. It is derived from the recorded phase
data on every call, so a resumed topic always continues where the flags say.
"""
import copy
import json
import sqlite3
from collections import Counter
from datetime import datetime
from typing import Optional

from loguru import logger

from english_tutor.content import ContentCatalog
from english_tutor.db import get_connection
from english_tutor.models import LEVELS, PHASE_ORDER, Phase, TopicProgress, shift_level

INPUT_FLOOD_TARGET = 5
ACQUIRED_ACCURACY = 0.8
DEFAULT_PASS_THRESHOLD = 0.7
ERROR_EXAMPLES = 3

LEVEL_REQUIREMENTS = {
    "A1": {"topics": 8, "test_avg": 0.70, "input_flood": 3},
    "A2": {"topics": 12, "test_avg": 0.70, "input_flood": 5},
    "B1": {"topics": 16, "test_avg": 0.75, "input_flood": 5},
    "B2": {"topics": 16, "test_avg": 0.75, "input_flood": 5},
    "C1": {"topics": 8, "test_avg": 0.80, "input_flood": 5},
}


class PhaseOrderError(Exception):
    """Raised when a phase is completed before the phases preceding it."""


def derive_phase(progress: TopicProgress) -> Phase:
    if not progress.discover:
        return Phase.DISCOVER
    if not progress.understand:
        return Phase.UNDERSTAND
    if not progress.notice:
        return Phase.NOTICE
    if not progress.practice.completed:
        return Phase.PRACTICE
    if not progress.produce.completed:
        return Phase.PRODUCE
    if progress.input_flood < INPUT_FLOOD_TARGET:
        return Phase.INPUT_FLOOD
    return Phase.REVIEW


def is_topic_completed(progress: TopicProgress) -> bool:
    return derive_phase(progress) is Phase.REVIEW


def topic_status(progress: Optional[TopicProgress]) -> str:
    if progress is None or progress.started_at is None:
        return "new"
    if progress.completed_at is not None:
        return "completed"
    return "in_progress"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _progress_from_row(row) -> TopicProgress:
    progress = TopicProgress(
        topic_id=row["topic_id"],
        level=row["level"],
        started_at=_dt(row["started_at"]),
        completed_at=_dt(row["completed_at"]),
        acquired=bool(row["acquired"]),
    )
    progress.load_phases(json.loads(row["phases"]))
    return progress


def load_progress(db_path: str, user_id: str, topic_id: str) -> TopicProgress | None:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT * FROM topic_progress WHERE user_id = ? AND topic_id = ?", (user_id, topic_id)
    ).fetchone()
    conn.close()
    return _progress_from_row(row) if row else None


def load_all_progress(db_path: str, user_id: str) -> dict[str, TopicProgress]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM topic_progress WHERE user_id = ?", (user_id,)).fetchall()
    conn.close()
    return {row["topic_id"]: _progress_from_row(row) for row in rows}


def save_progress(db_path: str, user_id: str, progress: TopicProgress) -> None:
    conn = get_connection(db_path)
    try:
        conn.execute(
            """INSERT INTO topic_progress (user_id, topic_id, level, phases, started_at, completed_at, acquired)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, topic_id) DO UPDATE SET
                level=excluded.level, phases=excluded.phases, started_at=excluded.started_at,
                completed_at=excluded.completed_at, acquired=excluded.acquired""",
            (
                user_id, progress.topic_id, progress.level, json.dumps(progress.phases_to_dict()),
                _ts(progress.started_at), _ts(progress.completed_at), int(progress.acquired),
            ),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Could not save progress for topic {}", progress.topic_id)
        raise
    finally:
        conn.close()


def record_practice_error(db_path: str, user_id: str, topic_id: str, error: dict) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO practice_errors
        (user_id, topic_id, exercise_type, user_answer, correct_answer, sentence, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            user_id, topic_id, error.get("exercise_type"), str(error.get("user_answer")),
            str(error.get("correct_answer")), error.get("sentence", ""), datetime.now().isoformat(),
        ),
    )
    conn.commit()
    conn.close()


def get_practice_errors(db_path: str, user_id: str, topic_id: Optional[str] = None) -> list[dict]:
    """Recorded practice mistakes, for one topic or across all topics."""
    conn = get_connection(db_path)
    if topic_id is None:
        rows = conn.execute(
            "SELECT * FROM practice_errors WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM practice_errors WHERE user_id = ? AND topic_id = ? ORDER BY id", (user_id, topic_id)
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def analyze_practice_errors(errors: list[dict], topic_names: Optional[dict] = None, limit: int = 3) -> dict:
    """Most frequent mistakes by topic and exercise type, plus the topic to focus on."""
    names = topic_names or {}
    total = len(errors)
    by_topic = Counter(e["topic_id"] for e in errors)
    by_type = Counter(e["exercise_type"] or "unknown" for e in errors)

    top_topics = [
        {
            "topic_id": topic_id,
            "name": names.get(topic_id, topic_id),
            "count": count,
            "rate": count / total,
            "examples": [e["sentence"] for e in errors if e["topic_id"] == topic_id][-ERROR_EXAMPLES:],
        }
        for topic_id, count in by_topic.most_common(limit)
    ]
    top_types = [
        {"exercise_type": kind, "count": count, "rate": count / total}
        for kind, count in by_type.most_common(limit)
    ]

    focus = top_topics[0] if top_topics else None
    if focus:
        message = (
            f"Focus on {focus['name']}. "
            f"{round(focus['rate'] * 100)}% of your practice mistakes are in this topic."
        )
    else:
        message = "Great grammar! Keep practicing."
    return {
        "total_errors": total,
        "top_topics": top_topics,
        "top_exercise_types": top_types,
        "focus_topic": focus["topic_id"] if focus else None,
        "message": message,
    }


def get_error_analysis(db_path: str, user_id: str, catalog: ContentCatalog, limit: int = 3) -> dict:
    names = {t["id"]: t["name"] for level in LEVELS for t in catalog.topics(level)}
    return analyze_practice_errors(get_practice_errors(db_path, user_id), names, limit)


class TopicJourney:
    """One learner working through one grammar topic."""

    def __init__(
        self,
        db_path: str,
        user_id: str,
        catalog: ContentCatalog,
        pass_threshold: float = DEFAULT_PASS_THRESHOLD,
    ):
        self.db_path = db_path
        self.user_id = user_id
        self.catalog = catalog
        self.pass_threshold = pass_threshold
        self.progress: Optional[TopicProgress] = None
        self.definition: dict = {}

    def start(self, topic_id: str, level: str, now: Optional[datetime] = None) -> dict:
        """Open a topic, creating its progress record on first start."""
        now = now or datetime.now()
        self.definition = self.catalog.topic_definition(topic_id, level)
        progress = load_progress(self.db_path, self.user_id, topic_id)
        if progress is None:
            progress = TopicProgress(topic_id=topic_id, level=level, started_at=now)
            save_progress(self.db_path, self.user_id, progress)
            logger.info("Started grammar topic {}", topic_id)
        self.progress = progress
        phase = self.current_phase()
        return {
            "topic": self.definition,
            "progress": progress,
            "current_phase": phase,
            "phase_content": self.phase_content(phase),
        }

    def _require_started(self) -> TopicProgress:
        if self.progress is None:
            raise RuntimeError("No topic started")
        return self.progress

    def current_phase(self) -> Phase:
        return derive_phase(self._require_started())

    def phase_content(self, phase: Phase) -> dict | None:
        return self.definition.get("phases", {}).get(Phase(phase).value)

    def complete_phase(
        self,
        phase: Phase,
        score: Optional[float] = None,
        text: str = "",
        feedback: str = "",
        accuracy: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Record completion data for `phase` and return the re-derived state.

        Raises PhaseOrderError if `phase` lies beyond the current phase. The
        journey keeps its previous state if saving fails.
        """
        phase = Phase(phase)
        now = now or datetime.now()
        current = derive_phase(self._require_started())
        if PHASE_ORDER.index(phase) > PHASE_ORDER.index(current):
            raise PhaseOrderError(f"Cannot complete {phase.value} before {current.value}")
        progress = copy.deepcopy(self.progress)

        if phase in (Phase.DISCOVER, Phase.UNDERSTAND, Phase.NOTICE):
            setattr(progress, phase.value, True)
        elif phase is Phase.PRACTICE:
            progress.practice.attempts += 1
            progress.practice.score = score or 0.0
            # a failed retake does not revoke an earlier pass
            if progress.practice.score >= self.pass_threshold:
                progress.practice.completed = True
        elif phase is Phase.PRODUCE:
            progress.produce.submissions.append(
                {"text": text, "feedback": feedback, "timestamp": now.isoformat()}
            )
            progress.produce.completed = True
        elif phase is Phase.INPUT_FLOOD:
            progress.input_flood += 1
        elif phase is Phase.REVIEW:
            if accuracy is not None:
                progress.review.accuracy = accuracy
            progress.review.last_review_at = now

        if is_topic_completed(progress):
            if progress.completed_at is None:
                progress.completed_at = now
                logger.info("Grammar topic {} completed", progress.topic_id)
            progress.acquired = progress.review.accuracy >= ACQUIRED_ACCURACY

        save_progress(self.db_path, self.user_id, progress)
        self.progress = progress
        next_phase = derive_phase(progress)
        logger.debug("Completed {} on {}, now at {}", phase.value, progress.topic_id, next_phase.value)
        return {
            "progress": progress,
            "next_phase": next_phase,
            "completed": progress.completed_at is not None,
            "phase_content": self.phase_content(next_phase),
        }

    def practice_exercises(self) -> list[dict]:
        """Practice exercises flattened so multi-sentence blocks become single items."""
        practice = self.phase_content(Phase.PRACTICE) or {}
        flat = []
        for exercise in practice.get("exercises", []):
            items = exercise.get("sentences") or exercise.get("questions")
            if items:
                for item in items:
                    flat.append({**item, "type": exercise["type"], "index": len(flat)})
            else:
                flat.append({**exercise, "index": len(flat)})
        return flat

    def submit_practice_answer(self, index: int, answer) -> dict:
        progress = self._require_started()
        exercises = self.practice_exercises()
        if not 0 <= index < len(exercises):
            return {"correct": False, "correct_answer": None, "feedback": "Exercise not found"}
        exercise = exercises[index]

        kind = exercise.get("type")
        if kind in ("fill_gap", "fill_gap_context"):
            expected = exercise.get("answer", "")
            correct = str(answer).strip().lower() == expected.strip().lower()
        elif kind in ("choose_correct", "multiple_choice"):
            correct = answer == exercise.get("correct")
            expected = exercise.get("options", [])[exercise["correct"]] if "correct" in exercise else None
        elif kind == "error_correction":
            expected = exercise.get("correct", "")
            correct = str(answer).strip().lower() == expected.strip().lower()
        else:
            logger.warning("Unknown exercise type {!r} in {}", kind, progress.topic_id)
            expected, correct = None, False

        if not correct:
            record_practice_error(self.db_path, self.user_id, progress.topic_id, {
                "exercise_type": kind,
                "user_answer": answer,
                "correct_answer": expected,
                "sentence": exercise.get("sentence") or exercise.get("question", ""),
            })
        return {
            "correct": correct,
            "correct_answer": expected,
            "explanation": exercise.get("explanation", ""),
            "feedback": "Correct!" if correct else f"The correct answer is: {expected}",
        }

    def input_flood_texts(self) -> list:
        return (self.phase_content(Phase.INPUT_FLOOD) or {}).get("texts", [])

    def review_cards(self) -> list:
        return (self.phase_content(Phase.REVIEW) or {}).get("grammar_cards", [])


def get_topics_for_level(catalog: ContentCatalog, progress: dict[str, TopicProgress], level: str) -> list[dict]:
    return [
        {**topic, "status": topic_status(progress.get(topic["id"]))}
        for topic in catalog.topics(level)
    ]


def get_stats(catalog: ContentCatalog, progress: dict[str, TopicProgress]) -> dict:
    started = [p for p in progress.values() if p.started_at]
    completed = [p for p in progress.values() if p.completed_at]
    reviewed = [p.review.accuracy for p in progress.values() if p.review.accuracy]
    by_level = {}
    total_topics = 0
    for level in LEVELS:
        ids = [t["id"] for t in catalog.topics(level)]
        total_topics += len(ids)
        done = sum(1 for i in ids if i in progress and progress[i].completed_at)
        by_level[level] = {
            "total": len(ids),
            "started": sum(1 for i in ids if i in progress and progress[i].started_at),
            "completed": done,
            "percentage": done / len(ids) * 100 if ids else 0.0,
        }
    return {
        "topics_started": len(started),
        "topics_completed": len(completed),
        "acquisition_rate": sum(reviewed) / len(reviewed) if reviewed else 0.0,
        "total_topics": total_topics,
        "by_level": by_level,
    }


def get_next_topic(catalog: ContentCatalog, progress: dict[str, TopicProgress], level: str) -> dict | None:
    """First unfinished topic at `level`, else the first topic of the next level."""
    for topic in catalog.topics(level):
        p = progress.get(topic["id"])
        if p is None or p.completed_at is None:
            return topic
    next_level = shift_level(level, 1)
    if next_level != level:
        topics = catalog.topics(next_level)
        if topics:
            return {**topics[0], "suggested_level": next_level}
    return None


def check_level_requirements(catalog: ContentCatalog, progress: dict[str, TopicProgress], level: str) -> dict:
    """Progress toward leaving a level. The topic count is capped at what the catalog offers."""
    req = LEVEL_REQUIREMENTS.get(level, LEVEL_REQUIREMENTS["A1"])
    topics = catalog.topics(level)
    required = min(req["topics"], len(topics)) if topics else req["topics"]
    records = [progress[t["id"]] for t in topics if t["id"] in progress]
    completed = sum(1 for p in records if p.completed_at)
    scores = [p.practice.score for p in records if p.practice.score]
    floods = [p.input_flood for p in records if p.input_flood > 0]
    avg_score = sum(scores) / len(scores) if scores else 0.0
    avg_flood = sum(floods) / len(floods) if floods else 0.0
    return {
        "topics_completed": completed,
        "topics_required": required,
        "topics_met": completed >= required,
        "test_avg": avg_score,
        "test_avg_required": req["test_avg"],
        "test_met": avg_score >= req["test_avg"],
        "avg_input_flood": avg_flood,
        "input_flood_required": req["input_flood"],
        "input_flood_met": avg_flood >= req["input_flood"],
        "all_met": completed >= required and avg_score >= req["test_avg"] and avg_flood >= req["input_flood"],
    }
