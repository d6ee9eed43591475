import random
from unittest.mock import patch

import pytest

from conftest import FakeBank
from english_tutor import grammar
from english_tutor.app import (
    SessionExitRequested, cmd_dashboard, main, run_placement, run_review_session, run_topic,
    session_int_prompt, session_prompt,
)
from english_tutor.config import Settings
from english_tutor.content import ContentCatalog
from english_tutor.models import CardStatus, Mode, Phase
from english_tutor.placement import PlacementConfig, PlacementEngine
from english_tutor.repository import CardRepository
from english_tutor.vocabulary import ReviewSession, add_word


def test_session_exit_requested_is_exception():
    with pytest.raises(SessionExitRequested):
        raise SessionExitRequested()


def test_session_prompt_raises_on_q():
    with patch("english_tutor.app.Prompt.ask", return_value="q"):
        with pytest.raises(SessionExitRequested):
            session_prompt("test prompt")


def test_session_prompt_raises_on_menu():
    with patch("english_tutor.app.Prompt.ask", return_value="menu"):
        with pytest.raises(SessionExitRequested):
            session_prompt("test prompt")


def test_session_prompt_returns_normal_input():
    with patch("english_tutor.app.Prompt.ask", return_value="hello"):
        result = session_prompt("test prompt")
        assert result == "hello"


def test_session_int_prompt_raises_on_q():
    with patch("english_tutor.app.Prompt.ask", return_value="q"):
        with pytest.raises(SessionExitRequested):
            session_int_prompt("rate", choices=["0", "1", "2", "3"])


def test_session_int_prompt_returns_normal_input():
    with patch("english_tutor.app.Prompt.ask", return_value="3"):
        result = session_int_prompt("rate", choices=["0", "1", "2", "3"])
        assert result == 3


def test_review_session_stops_on_q(ready_db):
    """User rates the first card then types 'q' on the second reveal; the first answer is kept."""
    repo = CardRepository(ready_db, "u1")
    add_word(repo, "apple", "яблоко")
    add_word(repo, "bread", "хлеб")
    session = ReviewSession(repo, rng=random.Random(0))

    with patch("english_tutor.app.Prompt.ask", side_effect=["", "3", "q"]):
        summary = run_review_session(session, Mode.RECEPTIVE, limit=10)

    assert summary["total"] == 1
    statuses = sorted(w.receptive.status.value for w in repo.all_words())
    assert statuses == [CardStatus.NEW.value, CardStatus.REVIEW.value]


def test_productive_review_asks_for_spelling(ready_db):
    repo = CardRepository(ready_db, "u1")
    add_word(repo, "apple", "яблоко")
    session = ReviewSession(repo)

    with patch("english_tutor.app.Prompt.ask", side_effect=["apple", "2"]):
        summary = run_review_session(session, Mode.PRODUCTIVE, limit=10)

    assert summary["correct"] == 1
    assert repo.get_word("apple").spelling_attempts == [True]


def test_review_session_with_no_cards(ready_db):
    session = ReviewSession(CardRepository(ready_db, "u1"))
    assert run_review_session(session, Mode.RECEPTIVE, limit=10) is None


def test_run_placement_to_completion():
    config = PlacementConfig(min_questions=4, max_questions=4)
    engine = PlacementEngine(FakeBank(), config, rng=random.Random(0))
    with patch("english_tutor.app.Prompt.ask", side_effect=["1"] * 4):
        result = run_placement(engine)
    assert result.questions_answered == 4
    assert all(r.accuracy == 1.0 for r in result.section_results.values())


def test_run_placement_abandoned():
    engine = PlacementEngine(FakeBank())
    with patch("english_tutor.app.Prompt.ask", side_effect=["1", "q"]):
        assert run_placement(engine) is None


def test_run_topic_walks_every_phase(ready_db):
    journey = grammar.TopicJourney(ready_db, "u1", ContentCatalog())
    answers = ["", "", "", "I am a student and I am happy."] + [""] * 5
    with patch("english_tutor.app.Prompt.ask", side_effect=answers):
        run_topic(journey, "a1_to_be", "A1")
    progress = grammar.load_progress(ready_db, "u1", "a1_to_be")
    assert progress.completed_at is not None
    assert progress.acquired


def test_run_topic_resumes_after_exit(ready_db):
    journey = grammar.TopicJourney(ready_db, "u1", ContentCatalog())
    with patch("english_tutor.app.Prompt.ask", side_effect=["", "q"]):
        run_topic(journey, "a1_to_be", "A1")
    assert journey.current_phase() is Phase.UNDERSTAND


def test_short_production_is_not_accepted(ready_db):
    journey = grammar.TopicJourney(ready_db, "u1", ContentCatalog())
    answers = ["", "", "", "Hi", "q"]
    with patch("english_tutor.app.Prompt.ask", side_effect=answers):
        run_topic(journey, "a1_to_be", "A1")
    assert journey.current_phase() is Phase.PRODUCE


def test_dashboard_renders_for_new_learner(ready_db):
    settings = Settings(db_path=ready_db, user_id="u1")
    cmd_dashboard(settings, ContentCatalog())


def test_main_quits(tmp_db):
    settings = Settings(db_path=tmp_db, user_id="u1", log_level="ERROR")
    with patch("english_tutor.app.get_settings", return_value=settings), \
            patch("english_tutor.app.Prompt.ask", side_effect=["dashboard", "quit"]):
        main()


def test_dashboard_shows_grammar_focus(ready_db, capsys):
    grammar.record_practice_error(ready_db, "u1", "a1_to_be", {
        "exercise_type": "fill_blank", "user_answer": "is", "correct_answer": "am", "sentence": "I ___ tired.",
    })
    settings = Settings(db_path=ready_db, user_id="u1")
    cmd_dashboard(settings, ContentCatalog())
    out = capsys.readouterr().out
    assert "Focus on Verb to be" in out
    assert "I ___ tired." in out
