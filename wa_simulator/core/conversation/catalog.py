"""Scenario catalog: JSON loading + dynamic registration"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Optional

from wa_simulator.core.conversation.template import ConversationTemplate, parse_template
from wa_simulator.core.errors import InvalidTemplateError
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)


class ScenarioCatalog:
    """
    Conversation template store.
    Seed data (JSON files) + templates registered at runtime.
    """

    def __init__(self) -> None:
        self._templates: dict[str, ConversationTemplate] = {}

    def load_from_json(self, path: str | Path) -> int:
        """Load one scenario file. Returns the number of templates loaded.

        The file holds either a single template object or an array of them.
        Invalid entries are logged and skipped.
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        raw_list: list[dict] = raw if isinstance(raw, list) else [raw]
        count = 0
        for entry in raw_list:
            try:
                self.register(entry)
                count += 1
            except InvalidTemplateError as e:
                scenario_id = entry.get("metadata", {}).get("id", "?")
                logger.warning("Failed to load scenario: %s (%s)", scenario_id, e)

        logger.info("Loaded %d scenario(s) from %s", count, path.name)
        return count

    def load_dir(self, directory: str | Path) -> int:
        """Load every ``*.json`` file in ``directory`` (sorted by name)."""
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning("Scenario directory not found: %s", directory)
            return 0
        return sum(self.load_from_json(p) for p in sorted(directory.glob("*.json")))

    def register(
        self, template: ConversationTemplate | Mapping[str, Any]
    ) -> ConversationTemplate:
        """Add or replace a template. Raw mappings are validated first."""
        if not isinstance(template, ConversationTemplate):
            template = parse_template(template)
        self._templates[template.metadata.id] = template
        return template

    def get(self, scenario_id: str) -> Optional[ConversationTemplate]:
        return self._templates.get(scenario_id)

    def list(self) -> list[ConversationTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.metadata.id)

    def count(self) -> int:
        return len(self._templates)

    def __contains__(self, scenario_id: str) -> bool:
        return scenario_id in self._templates
