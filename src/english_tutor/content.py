"""Read-only content catalog: placement banks, grammar topics and vocabulary packs."""
import json
from pathlib import Path

from loguru import logger

from english_tutor.models import Section

CONTENT_DIR = Path(__file__).parent / "data"


class ContentCatalog:
    """Loads pre-authored JSON content by level. Missing files yield empty content."""

    def __init__(self, content_dir: Path = CONTENT_DIR):
        self.content_dir = Path(content_dir)
        self._cache: dict[Path, dict | None] = {}

    def _read(self, relative: str) -> dict | None:
        path = self.content_dir / relative
        if path not in self._cache:
            if path.exists():
                self._cache[path] = json.loads(path.read_text(encoding="utf-8"))
            else:
                logger.warning("Content file missing: {}", path)
                self._cache[path] = None
        return self._cache[path]

    def questions_for(self, level: str, section: Section) -> list[dict]:
        """Questions of one placement section at one level."""
        data = self._read(f"placement/{level.lower()}.json")
        if not data:
            return []
        for block in data.get("sections", []):
            if block.get("type") == Section(section).value:
                return list(block.get("questions", []))
        return []

    def topics(self, level: str) -> list[dict]:
        data = self._read("grammar/topics.json") or {}
        return list(data.get(level, []))

    def topic_info(self, topic_id: str, level: str) -> dict | None:
        return next((t for t in self.topics(level) if t["id"] == topic_id), None)

    def topic_definition(self, topic_id: str, level: str) -> dict:
        """Phase content for a grammar topic, or a bare skeleton when none is authored."""
        data = self._read(f"grammar/{level}/{topic_id}.json")
        if data:
            return data
        return default_topic_definition(topic_id, level, self.topic_info(topic_id, level))

    def vocabulary_pack(self, level: str) -> dict | None:
        return self._read(f"vocabulary/{level.lower()}.json")


def default_topic_definition(topic_id: str, level: str, info: dict | None = None) -> dict:
    name = info["name"] if info else topic_id.replace("_", " ").title()
    return {
        "id": topic_id,
        "level": level,
        "title": name,
        "phases": {
            "discover": {
                "instruction": f"Read the text and notice the highlighted {name} structures.",
                "text": f"This is a sample text demonstrating {name}. Notice the patterns.",
            },
            "understand": {"title": f"{name} - Form and Use", "points": []},
            "notice": {"instruction": f"Find ALL {name} examples in the text.", "tasks": []},
            "practice": {"exercises": [], "pass_threshold": 0.7},
            "produce": {"instruction": f"Write 5 sentences using {name}.", "prompts": []},
            "input_flood": {"description": f"Read 5 texts containing {name}.", "texts": []},
            "review": {"grammar_cards": []},
        },
    }
