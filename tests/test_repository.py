import sqlite3
from datetime import datetime, timedelta

import pytest

from english_tutor.db import get_connection
from english_tutor.models import CardStatus, Mode, Quality, ReviewCard, VocabularyWord
from english_tutor.repository import CardRepository
from english_tutor.sm2 import advance

NOW = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def repo(ready_db):
    return CardRepository(ready_db, "learner")


def test_add_word_creates_both_cards(repo):
    word = repo.add_word(VocabularyWord(word="apple", translation="яблоко"), now=NOW)
    assert word.id is not None
    stored = repo.get_word("apple")
    assert stored.translation == "яблоко"
    assert stored.receptive.status == CardStatus.NEW
    assert stored.productive.status == CardStatus.NEW
    assert stored.added_at == NOW


def test_add_word_rejects_duplicates_case_insensitively(repo):
    assert repo.add_word(VocabularyWord(word="Apple")) is not None
    assert repo.add_word(VocabularyWord(word="apple")) is None
    assert len(repo.all_words()) == 1


def test_words_are_per_user(ready_db):
    CardRepository(ready_db, "a").add_word(VocabularyWord(word="apple"))
    other = CardRepository(ready_db, "b")
    assert other.get_word("apple") is None
    assert other.add_word(VocabularyWord(word="apple")) is not None


def test_get_due_cards_orders_most_overdue_first(repo):
    for text, hours in (("one", 1), ("two", 5), ("three", -5)):
        word = repo.add_word(VocabularyWord(word=text))
        word.receptive = ReviewCard(status=CardStatus.REVIEW, interval=2, next_review_at=NOW - timedelta(hours=hours))
        repo.save(word)
    due = repo.get_due_cards(Mode.RECEPTIVE, NOW)
    assert [w.word for w in due] == ["two", "one"]
    assert repo.get_due_cards(Mode.PRODUCTIVE, NOW) == []


def test_get_due_cards_excludes_new(repo):
    repo.add_word(VocabularyWord(word="fresh"))
    assert repo.get_due_cards(Mode.RECEPTIVE, NOW) == []
    assert [w.word for w in repo.get_new_cards(Mode.RECEPTIVE, 10)] == ["fresh"]


def test_get_new_cards_respects_limit(repo):
    for text in ("a", "b", "c"):
        repo.add_word(VocabularyWord(word=text))
    assert [w.word for w in repo.get_new_cards(Mode.PRODUCTIVE, 2)] == ["a", "b"]
    assert repo.get_new_cards(Mode.PRODUCTIVE, 0) == []


def test_save_answer_persists_card_and_result(repo):
    word = repo.add_word(VocabularyWord(word="apple"))
    word.receptive = advance(word.receptive, Quality.GOOD, NOW)
    repo.save_answer(word, Mode.RECEPTIVE, Quality.GOOD, NOW)

    stored = repo.get_word("apple")
    assert stored.receptive.status == CardStatus.LEARNING
    assert stored.receptive.learning_step == 1
    assert stored.receptive.next_review_at == NOW + timedelta(minutes=10)
    assert stored.productive.status == CardStatus.NEW
    results = repo.review_results(word.id)
    assert len(results) == 1
    assert results[0]["quality"] == 2


def test_save_answer_is_atomic(repo, ready_db):
    """A failing result insert leaves the card untouched."""
    word = repo.add_word(VocabularyWord(word="apple"))
    conn = get_connection(ready_db)
    conn.execute("DROP TABLE review_results")
    conn.commit()
    conn.close()

    word.receptive = advance(word.receptive, Quality.EASY, NOW)
    with pytest.raises(sqlite3.Error):
        repo.save_answer(word, Mode.RECEPTIVE, Quality.EASY, NOW)
    assert repo.get_word("apple").receptive.status == CardStatus.NEW


def test_save_requires_added_word(repo):
    with pytest.raises(ValueError):
        repo.save(VocabularyWord(word="ghost"))


def test_spelling_attempts_round_trip(repo):
    word = repo.add_word(VocabularyWord(word="cheese", examples=["I like cheese."]))
    word.spelling_attempts = [True, False]
    repo.save(word)
    stored = repo.get_word("cheese")
    assert stored.spelling_attempts == [True, False]
    assert stored.examples == ["I like cheese."]
