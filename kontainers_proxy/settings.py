"""Runtime settings: defaults, an optional JSON/YAML file, then environment."""

from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from kontainers_proxy.constants import (
    ACTIVE_DIRNAME,
    APP_NAME,
    DEFAULT_ACME_ROOT,
    DEFAULT_CACHE_DIR,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONFIG_DIR,
    DEFAULT_LOG_DIR,
    ENV_PREFIX,
    MAIN_CONFIG_FILENAME,
    MODSECURITY_DIRNAME,
    TEMPLATES_DIRNAME,
)
from kontainers_proxy.controller import RollbackPolicy
from kontainers_proxy.errors import SettingsError
from kontainers_proxy.nginx.compilers import CompilerOptions
from kontainers_proxy.schema import SettingsSchemaRepository, schema_errors

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
LOG_LEVELS = ("debug", "info", "warning", "error")
_PATH_FIELDS = (
    "config_dir",
    "active_dir",
    "templates_dir",
    "main_config",
    "modsecurity_dir",
    "state_dir",
)


def default_state_dir() -> Path:
    return Path.home() / ".config" / APP_NAME


@dataclass(frozen=True)
class Settings:
    config_dir: Path = Path(DEFAULT_CONFIG_DIR)
    active_dir: Optional[Path] = None
    templates_dir: Optional[Path] = None
    main_config: Optional[Path] = None
    modsecurity_dir: Optional[Path] = None
    state_dir: Optional[Path] = None
    log_dir: str = DEFAULT_LOG_DIR
    acme_root: str = DEFAULT_ACME_ROOT
    cache_dir: str = DEFAULT_CACHE_DIR
    nginx_binary: str = "nginx"
    command_prefix: tuple[str, ...] = ()
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    rollback_policy: RollbackPolicy = RollbackPolicy.VALIDATION_ONLY
    health_check_directive: bool = True
    log_level: str = "warning"

    @property
    def resolved_active_dir(self) -> Path:
        return self.active_dir or self.config_dir / ACTIVE_DIRNAME

    @property
    def resolved_templates_dir(self) -> Path:
        return self.templates_dir or self.config_dir / TEMPLATES_DIRNAME

    @property
    def resolved_main_config(self) -> Path:
        return self.main_config or self.config_dir / MAIN_CONFIG_FILENAME

    @property
    def resolved_modsecurity_dir(self) -> Path:
        return self.modsecurity_dir or self.config_dir / MODSECURITY_DIRNAME

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir or default_state_dir()

    def compiler_options(self) -> CompilerOptions:
        return CompilerOptions(
            templates_dir=self.resolved_templates_dir,
            log_dir=self.log_dir,
            acme_root=self.acme_root,
            modsecurity_dir=self.resolved_modsecurity_dir,
            health_check_directive=self.health_check_directive,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "config_dir": str(self.config_dir),
            "active_dir": str(self.resolved_active_dir),
            "templates_dir": str(self.resolved_templates_dir),
            "main_config": str(self.resolved_main_config),
            "modsecurity_dir": str(self.resolved_modsecurity_dir),
            "state_dir": str(self.resolved_state_dir),
            "log_dir": self.log_dir,
            "acme_root": self.acme_root,
            "cache_dir": self.cache_dir,
            "nginx_binary": self.nginx_binary,
            "command_prefix": list(self.command_prefix),
            "command_timeout": self.command_timeout,
            "rollback_policy": self.rollback_policy.value,
            "health_check_directive": self.health_check_directive,
            "log_level": self.log_level,
        }


def default_settings_path() -> Path:
    return default_state_dir() / "config.json"


def load_settings(
    path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None
) -> Settings:
    environ = os.environ if env is None else env
    settings = Settings()

    source = path
    if source is None and environ.get(f"{ENV_PREFIX}CONFIG"):
        source = Path(environ[f"{ENV_PREFIX}CONFIG"])
    if source is None and default_settings_path().exists():
        source = default_settings_path()

    if source is not None:
        settings = _apply(settings, _load_file(source), str(source))
    return _apply(settings, _from_env(environ), "environment")


def _load_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsError(str(path), str(exc)) from exc
    try:
        if path.suffix in (".yaml", ".yml"):
            payload = yaml.safe_load(text) or {}
        else:
            payload = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise SettingsError(str(path), f"cannot parse: {exc}") from exc

    problems = schema_errors(SettingsSchemaRepository().validator(), payload)
    if problems:
        raise SettingsError(str(path), "; ".join(problems))
    return payload


def _from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for item in fields(Settings):
        raw = environ.get(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is None:
            continue
        if item.name == "health_check_directive":
            lowered = raw.strip().lower()
            if lowered not in _TRUE | _FALSE:
                raise SettingsError(
                    "environment", f"{ENV_PREFIX}{item.name.upper()} must be a boolean"
                )
            values[item.name] = lowered in _TRUE
        elif item.name == "command_timeout":
            try:
                values[item.name] = float(raw)
            except ValueError as exc:
                raise SettingsError(
                    "environment", f"{ENV_PREFIX}COMMAND_TIMEOUT must be a number"
                ) from exc
        elif item.name == "log_level":
            if raw.strip().lower() not in LOG_LEVELS:
                raise SettingsError(
                    "environment", f"{ENV_PREFIX}LOG_LEVEL must be one of {LOG_LEVELS}"
                )
            values[item.name] = raw.strip().lower()
        else:
            values[item.name] = raw
    return values


def _apply(settings: Settings, values: Mapping[str, Any], source: str) -> Settings:
    changes: dict[str, Any] = {}
    for key, value in values.items():
        if key in _PATH_FIELDS:
            changes[key] = Path(value).expanduser()
        elif key == "command_prefix":
            prefix = shlex.split(value) if isinstance(value, str) else value
            changes[key] = tuple(prefix)
        elif key == "rollback_policy":
            try:
                changes[key] = RollbackPolicy(value)
            except ValueError as exc:
                raise SettingsError(
                    source, f"unknown rollback_policy {value!r}"
                ) from exc
        elif key == "command_timeout":
            if float(value) <= 0:
                raise SettingsError(source, "command_timeout must be positive")
            changes[key] = float(value)
        else:
            changes[key] = value
    return replace(settings, **changes)
