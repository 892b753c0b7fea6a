"""Repository for stored rule definitions."""

from __future__ import annotations

import json
from pathlib import Path

from kontainers_proxy.constants import RULE_DEFINITION_SUFFIX
from kontainers_proxy.errors import ConfigStoreError
from kontainers_proxy.rules.models import Rule
from kontainers_proxy.rules.parser import parse_rule, serialize_rule
from kontainers_proxy.utils import read_json, write_json


class RulesRepository:
    def __init__(self, root: Path) -> None:
        self._rules_dir = root / "rules"

    def path_for(self, rule_id: str) -> Path:
        return self._rules_dir / f"{rule_id}{RULE_DEFINITION_SUFFIX}"

    def list_rules(self) -> list[Rule]:
        if not self._rules_dir.exists():
            return []
        rules: list[Rule] = []
        for child in sorted(self._rules_dir.iterdir()):
            if child.name.startswith("."):
                continue
            if child.suffix == RULE_DEFINITION_SUFFIX:
                rules.append(self._load(child))
        return rules

    def get_rule(self, rule_id: str) -> Rule | None:
        path = self.path_for(rule_id)
        if not path.exists():
            return None
        return self._load(path)

    def save_rule(self, rule: Rule) -> Rule:
        try:
            write_json(self.path_for(rule.id), serialize_rule(rule))
        except OSError as exc:
            raise ConfigStoreError(self.path_for(rule.id), str(exc)) from exc
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        path = self.path_for(rule_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    @staticmethod
    def _load(path: Path) -> Rule:
        try:
            payload = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigStoreError(path, f"Cannot read rule ({exc})") from exc
        return parse_rule(payload)
