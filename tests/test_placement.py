import random
from datetime import date, datetime, timedelta

import pytest

from conftest import FakeBank
from english_tutor.content import ContentCatalog
from english_tutor.models import LEVELS, SECTION_ORDER, LevelScore, Section, SectionResult
from english_tutor.placement import (
    PlacementConfig, PlacementEngine, PlacementError, calculate_overall_level,
    level_from_certificate, reassessment_needed, recommend,
)

NOW = datetime(2024, 3, 1, 9, 0, 0)


def run_test(engine, answer):
    """Answer every question with answer(question) until the engine stops."""
    engine.start(now=NOW)
    asked = []
    while (question := engine.next_question()) is not None:
        asked.append(question)
        engine.submit_answer(answer(question))
    return asked, engine.finish(now=NOW + timedelta(minutes=30))


def test_always_correct_reaches_top_level(fake_bank):
    engine = PlacementEngine(fake_bank, rng=random.Random(1))
    asked, result = run_test(engine, lambda q: q.correct)
    assert 50 <= len(asked) <= 60
    assert result.overall_level == "C1"
    assert all(r.level == "C1" for r in result.section_results.values())
    assert result.questions_answered == len(asked)
    assert result.duration_seconds == 1800


def test_always_wrong_settles_at_bottom(fake_bank):
    engine = PlacementEngine(fake_bank, rng=random.Random(2))
    asked, result = run_test(engine, lambda q: (q.correct + 1) % len(q.options))
    assert 50 <= len(asked) <= 60
    assert result.overall_level == "A1"
    assert engine.session.current_level == "A1"


def test_never_exceeds_max_questions():
    """A stability window longer than the cap leaves only the cap to stop the test."""
    config = PlacementConfig(min_questions=10, max_questions=20, stability_window=30)
    engine = PlacementEngine(FakeBank(), config, rng=random.Random(3))
    asked, _ = run_test(engine, lambda q: q.correct if q.number % 2 else 3)
    assert len(asked) == 20


def test_questions_never_repeat():
    engine = PlacementEngine(FakeBank(per_section=2), rng=random.Random(4))
    asked, result = run_test(engine, lambda q: q.correct)
    ids = [q.id for q in asked]
    assert len(ids) == len(set(ids))
    assert engine.session.used_question_ids == set(ids)
    # the small bank runs dry before the minimum length is reached
    assert engine.exhausted
    assert len(asked) < 50
    assert result.questions_answered == len(asked)


def test_sections_rotate(fake_bank):
    engine = PlacementEngine(fake_bank, rng=random.Random(5))
    engine.start(now=NOW)
    sections = []
    for _ in range(8):
        question = engine.next_question()
        sections.append(question.section)
        engine.submit_answer(question.correct)
    assert sections == SECTION_ORDER * 2


def test_four_of_five_at_b1_moves_up(fake_bank):
    engine = PlacementEngine(fake_bank, PlacementConfig(start_level="B1"), rng=random.Random(6))
    engine.start(now=NOW)
    for i in range(5):
        question = engine.next_question()
        assert question.level == "B1"
        engine.submit_answer(question.correct if i != 2 else (question.correct + 1) % 4)
    assert engine.session.current_level == "B2"


def test_two_of_five_holds_level(fake_bank):
    engine = PlacementEngine(fake_bank, PlacementConfig(start_level="B1"), rng=random.Random(7))
    engine.start(now=NOW)
    for i in range(5):
        question = engine.next_question()
        engine.submit_answer(question.correct if i < 2 else (question.correct + 1) % 4)
    assert engine.session.current_level == "B1"


def test_one_of_five_moves_down(fake_bank):
    engine = PlacementEngine(fake_bank, PlacementConfig(start_level="B1"), rng=random.Random(8))
    engine.start(now=NOW)
    for i in range(5):
        question = engine.next_question()
        engine.submit_answer(question.correct if i == 0 else (question.correct + 1) % 4)
    assert engine.session.current_level == "A2"


def test_no_adaptation_before_five_answers(fake_bank):
    engine = PlacementEngine(fake_bank, rng=random.Random(9))
    engine.start(now=NOW)
    for _ in range(4):
        engine.submit_answer(engine.next_question().correct)
    assert engine.session.current_level == "A2"


def test_falls_back_to_nearest_level():
    engine = PlacementEngine(FakeBank(levels=["A1"]), rng=random.Random(10))
    engine.start(now=NOW)
    question = engine.next_question()
    assert question.level == "A1"
    assert question.id.startswith("A1_")


def test_pending_question_is_returned_again(fake_bank):
    engine = PlacementEngine(fake_bank)
    engine.start(now=NOW)
    first = engine.next_question()
    assert engine.next_question() is first
    assert engine.session.questions_asked == 1


def test_submit_errors(fake_bank):
    engine = PlacementEngine(fake_bank)
    with pytest.raises(PlacementError):
        engine.submit_answer(0)
    engine.start(now=NOW)
    with pytest.raises(PlacementError):
        engine.submit_answer(0)
    engine.next_question()
    with pytest.raises(ValueError):
        engine.submit_answer(4)
    with pytest.raises(ValueError):
        engine.submit_answer(-1)


def test_finished_session_is_terminal(fake_bank):
    engine = PlacementEngine(fake_bank)
    engine.start(now=NOW)
    engine.submit_answer(engine.next_question().correct)
    result = engine.finish(now=NOW)
    assert engine.finish() is result
    assert engine.next_question() is None
    with pytest.raises(PlacementError):
        engine.submit_answer(0)


def test_submit_feedback(fake_bank):
    engine = PlacementEngine(fake_bank)
    engine.start(now=NOW)
    feedback = engine.submit_answer(engine.next_question().correct)
    assert feedback == {"correct": True, "correct_answer": 0, "correct_option": "a"}


def test_progress_report(fake_bank):
    engine = PlacementEngine(fake_bank)
    engine.start(now=NOW)
    engine.submit_answer(engine.next_question().correct)
    report = engine.progress(now=NOW + timedelta(seconds=30))
    assert report["questions_answered"] == 1
    assert report["elapsed_seconds"] == 30
    assert report["sections"][0] == {"section": "grammar", "answered": 1, "accuracy": 1.0}


def test_unknown_start_level_is_rejected(fake_bank):
    with pytest.raises(ValueError):
        PlacementEngine(fake_bank, PlacementConfig(start_level="C2"))


def test_section_level_needs_two_attempts(fake_bank):
    engine = PlacementEngine(fake_bank)
    by_level = {level: LevelScore() for level in LEVELS}
    by_level["A2"] = LevelScore(correct=2, total=3)
    by_level["B1"] = LevelScore(correct=1, total=1)
    assert engine.section_level(by_level) == "A2"
    by_level["A2"] = LevelScore(correct=1, total=3)
    assert engine.section_level(by_level) == "A1"


def test_runs_against_shipped_content():
    engine = PlacementEngine(ContentCatalog(), rng=random.Random(11))
    asked, result = run_test(engine, lambda q: q.correct)
    assert not engine.exhausted
    assert len(asked) >= 50
    assert result.overall_level == "C1"


def test_shipped_content_outlasts_a_weak_learner():
    engine = PlacementEngine(ContentCatalog(), rng=random.Random(11))
    asked, result = run_test(engine, lambda q: (q.correct + 1) % len(q.options))
    assert not engine.exhausted
    assert len(asked) >= 50
    assert result.overall_level == "A1"


def test_overall_level_is_most_common():
    assert calculate_overall_level(["B1", "B1", "B2", "A2"]) == "B1"


def test_overall_level_ties_go_lower():
    assert calculate_overall_level(["A2", "A2", "B1", "B1"]) == "A2"


def test_overall_level_pulled_down_by_weak_section():
    assert calculate_overall_level(["B2", "B2", "B2", "A2"]) == "B1"
    assert calculate_overall_level([]) == "A1"


def _section(correct, total, level="B1"):
    return SectionResult(correct=correct, total=total, accuracy=correct / total, level=level, by_level={})


def test_recommend_names_weakest_section():
    sections = {
        Section.GRAMMAR: _section(8, 10),
        Section.READING: _section(2, 10),
        Section.LISTENING: _section(0, 2),
    }
    rec = recommend("B1", sections)
    assert rec["level"] == "B1"
    assert "Present Perfect" in rec["advice"]
    assert rec["weak_area"]["section"] == "reading"
    assert "20%" in rec["weak_area"]["suggestion"]


def test_certificate_conversion():
    today = date(2024, 3, 1)
    recent = date(2023, 6, 1)
    assert level_from_certificate("IELTS", "6.5", recent, today)["level"] == "B2"
    assert level_from_certificate("IELTS", 8.5, recent, today)["level"] == "C1"
    assert level_from_certificate("TOEFL", "95", recent, today)["level"] == "B2"
    assert level_from_certificate("Cambridge", "fce", recent, today)["level"] == "B2"
    assert not level_from_certificate("IELTS", "abc", recent, today)["success"]
    assert not level_from_certificate("TOEFL", "10", recent, today)["success"]
    assert not level_from_certificate("DELF", "B2", recent, today)["success"]


def test_toefl_bands_have_no_gaps():
    today = date(2024, 3, 1)
    recent = date(2023, 6, 1)
    assert level_from_certificate("TOEFL", 109.5, recent, today)["level"] == "C1"
    assert level_from_certificate("TOEFL", 99.5, recent, today)["level"] == "B2"
    assert level_from_certificate("TOEFL", "79.5", recent, today)["level"] == "B1"
    assert level_from_certificate("TOEFL", 30, recent, today)["level"] == "A1"
    assert level_from_certificate("TOEFL", 120, recent, today)["level"] == "C1"
    assert not level_from_certificate("TOEFL", 121, recent, today)["success"]


def test_missing_certificate_score_is_rejected():
    today = date(2024, 3, 1)
    recent = date(2023, 6, 1)
    assert not level_from_certificate("TOEFL", None, recent, today)["success"]
    assert not level_from_certificate("IELTS", None, recent, today)["success"]


def test_old_certificate_suggests_test():
    result = level_from_certificate("IELTS", "7.0", date(2020, 1, 1), date(2024, 3, 1))
    assert not result["success"]
    assert result["suggest_test"]


def test_reassessment():
    assert reassessment_needed(None, None, NOW)["reason"] == "no_test"
    assert reassessment_needed(NOW - timedelta(days=91), NOW.date(), NOW)["reason"] == "periodic"
    returning = reassessment_needed(NOW - timedelta(days=30), NOW.date() - timedelta(days=20), NOW)
    assert returning["reason"] == "returning_user"
    assert not reassessment_needed(NOW - timedelta(days=30), NOW.date(), NOW)["needed"]
