import pytest

from english_tutor.db import init_db
from english_tutor.models import LEVELS, SECTION_ORDER


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tutor.db")
    return db_path


@pytest.fixture
def ready_db(tmp_db):
    """Temporary database with the schema created."""
    init_db(tmp_db)
    return tmp_db


class FakeBank:
    """Question bank with `per_section` questions for every level and section.

    Option 0 is always the correct one.
    """

    def __init__(self, per_section=20, levels=LEVELS):
        self.questions = {
            (level, section): [
                {"id": f"q{i}", "question": f"{level} {section.value} {i}", "options": ["a", "b", "c", "d"], "correct": 0}
                for i in range(per_section)
            ]
            for level in levels
            for section in SECTION_ORDER
        }

    def questions_for(self, level, section):
        return list(self.questions.get((level, section), []))


@pytest.fixture
def fake_bank():
    return FakeBank()
