"""Vocabulary card storage: due/new card lookup and atomic answer recording."""
import json
import sqlite3
from datetime import datetime
from typing import Optional

from loguru import logger

from english_tutor.db import get_connection
from english_tutor.models import CardStatus, Mode, Quality, ReviewCard, VocabularyWord


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="seconds") if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _card_from_row(row) -> ReviewCard:
    return ReviewCard(
        status=CardStatus(row["status"]),
        ease_factor=row["ease_factor"],
        interval=row["interval"],
        repetitions=row["repetitions"],
        lapses=row["lapses"],
        learning_step=row["learning_step"],
        next_review_at=_dt(row["next_review_at"]),
        last_review_at=_dt(row["last_review_at"]),
    )


class CardRepository:
    """Per-learner access to vocabulary words and their two review cards."""

    def __init__(self, db_path: str, user_id: str):
        self.db_path = db_path
        self.user_id = user_id

    def _load(self, conn: sqlite3.Connection, rows) -> list[VocabularyWord]:
        words = []
        for row in rows:
            cards = {
                c["mode"]: _card_from_row(c)
                for c in conn.execute("SELECT * FROM review_cards WHERE word_id = ?", (row["id"],))
            }
            words.append(VocabularyWord(
                id=row["id"],
                word=row["word"],
                translation=row["translation"] or "",
                transcription=row["transcription"] or "",
                definition=row["definition"] or "",
                level=row["level"],
                examples=json.loads(row["examples"] or "[]"),
                receptive=cards.get(Mode.RECEPTIVE.value, ReviewCard()),
                productive=cards.get(Mode.PRODUCTIVE.value, ReviewCard()),
                spelling_attempts=json.loads(row["spelling_attempts"] or "[]"),
                added_at=_dt(row["added_at"]),
            ))
        return words

    def add_word(self, word: VocabularyWord, now: Optional[datetime] = None) -> Optional[VocabularyWord]:
        """Insert a word with fresh cards. Returns None when the learner already has it."""
        now = now or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(
                """INSERT OR IGNORE INTO words
                (user_id, word, translation, transcription, definition, level, examples, spelling_attempts, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    self.user_id, word.word.strip(), word.translation, word.transcription,
                    word.definition, word.level, json.dumps(word.examples),
                    json.dumps(word.spelling_attempts), _ts(now),
                ),
            )
            if cur.rowcount == 0:
                conn.rollback()
                return None
            word_id = cur.lastrowid
            for mode in Mode:
                self._write_card(conn, word_id, mode, word.card(mode))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()
        word.id = word_id
        word.added_at = now
        return word

    def get_word(self, text: str) -> Optional[VocabularyWord]:
        conn = get_connection(self.db_path)
        rows = conn.execute(
            "SELECT * FROM words WHERE user_id = ? AND word = ?", (self.user_id, text.strip())
        ).fetchall()
        words = self._load(conn, rows)
        conn.close()
        return words[0] if words else None

    def all_words(self) -> list[VocabularyWord]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT * FROM words WHERE user_id = ? ORDER BY id", (self.user_id,)).fetchall()
        words = self._load(conn, rows)
        conn.close()
        return words

    def get_due_cards(self, mode: Mode, now: Optional[datetime] = None) -> list[VocabularyWord]:
        """Words whose `mode` card is past its review time, most overdue first. New cards are excluded."""
        now = now or datetime.now()
        conn = get_connection(self.db_path)
        rows = conn.execute(
            """SELECT w.* FROM words w
            JOIN review_cards c ON c.word_id = w.id
            WHERE w.user_id = ? AND c.mode = ? AND c.status != 'new' AND c.next_review_at <= ?
            ORDER BY c.next_review_at ASC, w.id ASC""",
            (self.user_id, Mode(mode).value, _ts(now)),
        ).fetchall()
        words = self._load(conn, rows)
        conn.close()
        return words

    def get_new_cards(self, mode: Mode, limit: int) -> list[VocabularyWord]:
        if limit <= 0:
            return []
        conn = get_connection(self.db_path)
        rows = conn.execute(
            """SELECT w.* FROM words w
            JOIN review_cards c ON c.word_id = w.id
            WHERE w.user_id = ? AND c.mode = ? AND c.status = 'new'
            ORDER BY w.id ASC
            LIMIT ?""",
            (self.user_id, Mode(mode).value, limit),
        ).fetchall()
        words = self._load(conn, rows)
        conn.close()
        return words

    def _write_card(self, conn: sqlite3.Connection, word_id: int, mode: Mode, card: ReviewCard) -> None:
        conn.execute(
            """INSERT INTO review_cards
            (word_id, mode, status, ease_factor, interval, repetitions, lapses, learning_step, next_review_at, last_review_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(word_id, mode) DO UPDATE SET
                status=excluded.status, ease_factor=excluded.ease_factor, interval=excluded.interval,
                repetitions=excluded.repetitions, lapses=excluded.lapses, learning_step=excluded.learning_step,
                next_review_at=excluded.next_review_at, last_review_at=excluded.last_review_at""",
            (
                word_id, Mode(mode).value, CardStatus(card.status).value, card.ease_factor, card.interval,
                card.repetitions, card.lapses, card.learning_step,
                _ts(card.next_review_at), _ts(card.last_review_at),
            ),
        )

    def save(self, word: VocabularyWord) -> None:
        """Persist both cards and the spelling record of an existing word."""
        conn = get_connection(self.db_path)
        try:
            self._write_word(conn, word)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _write_word(self, conn: sqlite3.Connection, word: VocabularyWord) -> None:
        if word.id is None:
            raise ValueError(f"Word {word.word!r} has not been added yet")
        conn.execute(
            "UPDATE words SET spelling_attempts = ? WHERE id = ? AND user_id = ?",
            (json.dumps(word.spelling_attempts), word.id, self.user_id),
        )
        for mode in Mode:
            self._write_card(conn, word.id, mode, word.card(mode))

    def save_answer(self, word: VocabularyWord, mode: Mode, quality: Quality, now: datetime) -> None:
        """Persist the advanced word and its review result in one transaction."""
        conn = get_connection(self.db_path)
        try:
            self._write_word(conn, word)
            conn.execute(
                "INSERT INTO review_results (word_id, mode, quality, reviewed_at) VALUES (?, ?, ?, ?)",
                (word.id, Mode(mode).value, int(quality), _ts(now)),
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            logger.error("Could not record answer for {!r}; nothing was saved", word.word)
            raise
        finally:
            conn.close()

    def review_results(self, word_id: int) -> list:
        conn = get_connection(self.db_path)
        rows = conn.execute(
            "SELECT * FROM review_results WHERE word_id = ? ORDER BY id", (word_id,)
        ).fetchall()
        conn.close()
        return rows
