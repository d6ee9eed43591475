"""Per-learner settings, skill levels, session log and study streak."""
import json
from datetime import date, datetime, timedelta
from typing import Optional

from english_tutor.db import get_connection
from english_tutor.models import LEVELS, PlacementResult

SESSION_LOG_LIMIT = 100
SKILLS = ("overall", "grammar", "vocabulary", "reading", "listening")


def get_setting(db_path: str, user_id: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT value FROM user_settings WHERE user_id = ? AND key = ?", (user_id, key)
    ).fetchone()
    conn.close()
    return row["value"] if row else default


def set_setting(db_path: str, user_id: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO user_settings (user_id, key, value) VALUES (?, ?, ?)
        ON CONFLICT(user_id, key) DO UPDATE SET value=?""",
        (user_id, key, value, value),
    )
    conn.commit()
    conn.close()


def get_level(db_path: str, user_id: str, skill: str = "overall") -> str:
    return get_setting(db_path, user_id, f"level:{skill}", "A1")


def set_level(db_path: str, user_id: str, skill: str, level: str) -> None:
    if skill not in SKILLS:
        raise ValueError(f"Unknown skill: {skill!r}")
    if level not in LEVELS:
        raise ValueError(f"Unknown CEFR level: {level!r}")
    set_setting(db_path, user_id, f"level:{skill}", level)


def get_levels(db_path: str, user_id: str) -> dict[str, str]:
    return {skill: get_level(db_path, user_id, skill) for skill in SKILLS}


def log_session(
    db_path: str,
    user_id: str,
    session_type: str,
    duration_seconds: float,
    accuracy: float,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> None:
    """Append to the session log, keeping only the learner's latest SESSION_LOG_LIMIT entries."""
    now = now or datetime.now()
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO session_log (user_id, type, duration_seconds, accuracy, details, logged_at)
        VALUES (?, ?, ?, ?, ?, ?)""",
        (user_id, session_type, duration_seconds, accuracy, json.dumps(details or {}), now.isoformat()),
    )
    conn.execute(
        """DELETE FROM session_log WHERE user_id = ? AND id NOT IN (
            SELECT id FROM session_log WHERE user_id = ? ORDER BY id DESC LIMIT ?
        )""",
        (user_id, user_id, SESSION_LOG_LIMIT),
    )
    conn.commit()
    conn.close()


def get_sessions(db_path: str, user_id: str, days: int = 30, now: Optional[datetime] = None) -> list[dict]:
    now = now or datetime.now()
    cutoff = (now - timedelta(days=days)).isoformat()
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT * FROM session_log WHERE user_id = ? AND logged_at > ? ORDER BY id",
        (user_id, cutoff),
    ).fetchall()
    conn.close()
    return [
        {
            "type": r["type"],
            "duration_seconds": r["duration_seconds"],
            "accuracy": r["accuracy"],
            "logged_at": r["logged_at"],
            **json.loads(r["details"] or "{}"),
        }
        for r in rows
    ]


def add_study_time(db_path: str, user_id: str, minutes: float, today: Optional[date] = None) -> int:
    """Add study minutes and update the daily streak. Returns the new streak."""
    today = today or date.today()
    total = float(get_setting(db_path, user_id, "total_study_minutes", "0")) + minutes
    set_setting(db_path, user_id, "total_study_minutes", str(total))

    last = get_setting(db_path, user_id, "last_study_date")
    streak = int(get_setting(db_path, user_id, "streak", "0"))
    if last == (today - timedelta(days=1)).isoformat():
        streak += 1
    elif last != today.isoformat():
        streak = 1
    set_setting(db_path, user_id, "streak", str(streak))
    set_setting(db_path, user_id, "last_study_date", today.isoformat())
    return streak


def get_streak(db_path: str, user_id: str, today: Optional[date] = None) -> int:
    today = today or date.today()
    last = get_setting(db_path, user_id, "last_study_date")
    if last in (today.isoformat(), (today - timedelta(days=1)).isoformat()):
        return int(get_setting(db_path, user_id, "streak", "0"))
    return 0


def get_last_study_date(db_path: str, user_id: str) -> date | None:
    last = get_setting(db_path, user_id, "last_study_date")
    return date.fromisoformat(last) if last else None


def save_placement_result(db_path: str, user_id: str, result: PlacementResult) -> None:
    """Store a finished placement test and copy its levels onto the learner profile."""
    sections = {
        section.value: {
            "correct": r.correct,
            "total": r.total,
            "accuracy": r.accuracy,
            "level": r.level,
        }
        for section, r in result.section_results.items()
    }
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO placement_results
        (user_id, overall_level, section_results, questions_answered, duration_seconds, taken_at)
        VALUES (?, ?, ?, ?, ?, ?)""",
        (
            user_id, result.overall_level, json.dumps(sections), result.questions_answered,
            result.duration_seconds, result.taken_at.isoformat(),
        ),
    )
    conn.commit()
    conn.close()

    set_level(db_path, user_id, "overall", result.overall_level)
    for section, data in sections.items():
        skill = "listening" if section == "listening_simulation" else section
        set_level(db_path, user_id, skill, data["level"] or result.overall_level)


def get_latest_placement(db_path: str, user_id: str) -> dict | None:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT * FROM placement_results WHERE user_id = ? ORDER BY id DESC LIMIT 1", (user_id,)
    ).fetchone()
    conn.close()
    if not row:
        return None
    return {
        "overall_level": row["overall_level"],
        "section_results": json.loads(row["section_results"]),
        "questions_answered": row["questions_answered"],
        "duration_seconds": row["duration_seconds"],
        "taken_at": datetime.fromisoformat(row["taken_at"]),
    }


def reset_all_progress(db_path: str, user_id: str) -> None:
    """Delete every record kept for the learner."""
    conn = get_connection(db_path)
    conn.execute("DELETE FROM words WHERE user_id = ?", (user_id,))
    for table in ("topic_progress", "practice_errors", "placement_results", "session_log", "user_settings"):
        conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
    conn.commit()
    conn.close()
