import json
import time
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

_SCHEMA_CACHE: dict[str, tuple[float, dict[str, Any]]] = {}

PACKAGE_ROOT = Path(__file__).resolve().parent


class JsonSchemaRepository:
    def __init__(self, *, local_schema_path: Path, ttl_seconds: int = 3600) -> None:
        self.local_schema_path = local_schema_path
        self.ttl_seconds = ttl_seconds

    def load_schema(self) -> dict[str, Any]:
        key = str(self.local_schema_path.resolve())
        cached = _SCHEMA_CACHE.get(key)
        now = time.time()
        if cached and now - cached[0] < self.ttl_seconds:
            return cached[1]
        schema = json.loads(self.local_schema_path.read_text(encoding="utf-8"))
        _SCHEMA_CACHE[key] = (now, schema)
        return schema

    def validator(self) -> Draft202012Validator:
        return Draft202012Validator(self.load_schema())


class RuleSchemaRepository(JsonSchemaRepository):
    def __init__(self, ttl_seconds: int = 3600) -> None:
        super().__init__(
            local_schema_path=PACKAGE_ROOT / "rules" / "rule.schema.json",
            ttl_seconds=ttl_seconds,
        )


class SettingsSchemaRepository(JsonSchemaRepository):
    def __init__(self, ttl_seconds: int = 3600) -> None:
        super().__init__(
            local_schema_path=PACKAGE_ROOT / "settings.schema.json",
            ttl_seconds=ttl_seconds,
        )


def format_schema_error(error: Any) -> str:
    path = ".".join([str(part) for part in error.path])
    return f"{error.message} at {path}" if path else str(error.message)


def schema_errors(validator: Draft202012Validator, payload: Any) -> list[str]:
    errors = sorted(
        validator.iter_errors(payload),
        key=lambda item: [str(part) for part in item.path],
    )
    return [format_schema_error(error) for error in errors]
