"""Learner progress overview across vocabulary, grammar and placement."""
from datetime import datetime
from typing import Optional

from english_tutor import grammar, profile, vocabulary
from english_tutor.content import ContentCatalog
from english_tutor.placement import reassessment_needed
from english_tutor.repository import CardRepository


def get_accuracy_label(score: float) -> str:
    if score >= 80:
        return "STRONG"
    elif score >= 65:
        return "STEADY"
    elif score >= 50:
        return "NEEDS WORK"
    return "STRUGGLING"


def get_accuracy_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 65:
        return "yellow"
    elif score >= 50:
        return "dark_orange"
    return "red"


def recent_accuracy(db_path: str, user_id: str, days: int = 30, now: Optional[datetime] = None) -> dict[str, float]:
    """Average session accuracy per session type over the last `days`, as percentages."""
    totals: dict[str, list[float]] = {}
    for session in profile.get_sessions(db_path, user_id, days=days, now=now):
        totals.setdefault(session["type"], []).append(session["accuracy"] or 0.0)
    return {kind: round(sum(v) / len(v) * 100, 1) for kind, v in totals.items()}


def get_learner_overview(
    db_path: str,
    user_id: str,
    catalog: ContentCatalog,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now()
    words = CardRepository(db_path, user_id).all_words()
    topics = grammar.load_all_progress(db_path, user_id)
    levels = profile.get_levels(db_path, user_id)
    latest = profile.get_latest_placement(db_path, user_id)
    return {
        "levels": levels,
        "streak": profile.get_streak(db_path, user_id, today=now.date()),
        "vocabulary": vocabulary.get_stats(words),
        "due": vocabulary.get_due_counts(words, now),
        "gap": vocabulary.get_gap(words),
        "grammar": grammar.get_stats(catalog, topics),
        "next_topic": grammar.get_next_topic(catalog, topics, levels["grammar"]),
        "accuracy": recent_accuracy(db_path, user_id, now=now),
        "errors": grammar.get_error_analysis(db_path, user_id, catalog),
        "reassessment": reassessment_needed(
            latest["taken_at"] if latest else None,
            profile.get_last_study_date(db_path, user_id),
            now,
        ),
    }
