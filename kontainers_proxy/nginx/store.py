"""Per-rule configuration files inside the active Nginx include directory."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from kontainers_proxy.constants import (
    ACTIVE_DIRNAME,
    DEFAULT_CACHE_DIR,
    DEFAULT_LOG_DIR,
    HTTP_CONFIG_SUFFIX,
    MAIN_CONFIG_FILENAME,
    MODSECURITY_DIRNAME,
    PROXY_HEADERS_TEMPLATE,
    STREAM_CONFIG_SUFFIX,
    TEMPLATES_DIRNAME,
)
from kontainers_proxy.errors import ConfigStoreError
from kontainers_proxy.nginx.modsecurity import waf_rules_path
from kontainers_proxy.nginx.templates import render_main_config, render_proxy_headers
from kontainers_proxy.utils import atomic_write_bytes, atomic_write_text

logger = structlog.get_logger()


class ConfigContext(str, Enum):
    HTTP = "http"
    STREAM = "stream"

    @property
    def suffix(self) -> str:
        if self == ConfigContext.STREAM:
            return STREAM_CONFIG_SUFFIX
        return HTTP_CONFIG_SUFFIX

    @property
    def other(self) -> "ConfigContext":
        if self == ConfigContext.STREAM:
            return ConfigContext.HTTP
        return ConfigContext.STREAM


@dataclass(frozen=True)
class ConfigSnapshot:
    """Exact prior bytes of a rule's files, used for byte-identical restores.

    ``data`` is None when only the WAF rules file existed.
    """

    rule_id: str
    context: ConfigContext
    data: Optional[bytes]
    waf_data: Optional[bytes] = None


class ConfigStore:
    def __init__(
        self,
        config_dir: Path,
        *,
        active_dir: Optional[Path] = None,
        templates_dir: Optional[Path] = None,
        main_config: Optional[Path] = None,
        modsecurity_dir: Optional[Path] = None,
        log_dir: str = DEFAULT_LOG_DIR,
        cache_dir: str = DEFAULT_CACHE_DIR,
    ) -> None:
        self._config_dir = config_dir
        self._active_dir = active_dir or (config_dir / ACTIVE_DIRNAME)
        self._templates_dir = templates_dir or (config_dir / TEMPLATES_DIRNAME)
        self._main_config = main_config or (config_dir / MAIN_CONFIG_FILENAME)
        self._modsecurity_dir = modsecurity_dir or (config_dir / MODSECURITY_DIRNAME)
        self._log_dir = log_dir
        self._cache_dir = cache_dir

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def active_dir(self) -> Path:
        return self._active_dir

    @property
    def templates_dir(self) -> Path:
        return self._templates_dir

    @property
    def main_config(self) -> Path:
        return self._main_config

    @property
    def modsecurity_dir(self) -> Path:
        return self._modsecurity_dir

    def path_for(
        self, rule_id: str, context: ConfigContext = ConfigContext.HTTP
    ) -> Path:
        if not rule_id or "/" in rule_id or "\\" in rule_id or rule_id.startswith("."):
            raise ConfigStoreError(self._active_dir / rule_id, "Unsafe rule id")
        return self._active_dir / f"{rule_id}{context.suffix}"

    def find(self, rule_id: str) -> Optional[tuple[Path, ConfigContext]]:
        for context in ConfigContext:
            path = self.path_for(rule_id, context)
            if path.is_file():
                return path, context
        return None

    def waf_path_for(self, rule_id: str) -> Path:
        self.path_for(rule_id)
        return waf_rules_path(self._modsecurity_dir, rule_id)

    def read(self, rule_id: str) -> Optional[str]:
        found = self.find(rule_id)
        if found is None:
            return None
        path, _ = found
        data = self._read_bytes(path)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigStoreError(path, f"Config is not UTF-8 ({exc})") from exc

    def write(
        self,
        rule_id: str,
        text: str,
        context: ConfigContext = ConfigContext.HTTP,
    ) -> Path:
        return self._write_bytes(rule_id, text.encode("utf-8"), context)

    def write_waf(self, rule_id: str, text: str) -> Path:
        path = self._write_waf_bytes(rule_id, text.encode("utf-8"))
        logger.debug("WAF rules written", rule_id=rule_id, path=str(path))
        return path

    def remove_waf(self, rule_id: str) -> bool:
        return self._unlink(self.waf_path_for(rule_id))

    def snapshot(self, rule_id: str) -> Optional[ConfigSnapshot]:
        found = self.find(rule_id)
        waf_path = self.waf_path_for(rule_id)
        waf_data = self._read_bytes(waf_path) if waf_path.is_file() else None
        if found is None:
            if waf_data is None:
                return None
            return ConfigSnapshot(rule_id, ConfigContext.HTTP, None, waf_data)
        path, context = found
        return ConfigSnapshot(rule_id, context, self._read_bytes(path), waf_data)

    def restore(self, rule_id: str, snapshot: Optional[ConfigSnapshot]) -> None:
        if snapshot is None:
            self.remove(rule_id)
        else:
            if snapshot.data is None:
                for context in ConfigContext:
                    self._unlink(self.path_for(rule_id, context))
            else:
                self._write_bytes(rule_id, snapshot.data, snapshot.context)
            if snapshot.waf_data is None:
                self.remove_waf(rule_id)
            else:
                self._write_waf_bytes(rule_id, snapshot.waf_data)
        logger.debug(
            "Rule config restored", rule_id=rule_id, existed=snapshot is not None
        )

    def remove(self, rule_id: str) -> bool:
        removed = False
        for context in ConfigContext:
            removed = self._unlink(self.path_for(rule_id, context)) or removed
        return self.remove_waf(rule_id) or removed

    def list_rule_ids(self) -> list[str]:
        if not self._active_dir.exists():
            return []
        suffixes = {context.suffix for context in ConfigContext}
        return sorted(
            child.stem
            for child in self._active_dir.iterdir()
            if child.is_file()
            and child.suffix in suffixes
            and not child.name.startswith(".")
        )

    def ensure_main_config(self) -> bool:
        """Seed the main config and templates; never overwrite an existing file."""
        created = False
        headers = self._templates_dir / PROXY_HEADERS_TEMPLATE
        try:
            self._active_dir.mkdir(parents=True, exist_ok=True)
            if not headers.exists():
                atomic_write_text(headers, render_proxy_headers())
            if not self._main_config.exists():
                atomic_write_text(
                    self._main_config,
                    render_main_config(
                        self._active_dir, self._log_dir, self._cache_dir
                    ),
                )
                created = True
        except OSError as exc:
            raise ConfigStoreError(
                self._config_dir, f"Cannot bootstrap ({exc})"
            ) from exc
        if created:
            logger.info("Main config created", path=str(self._main_config))
        return created

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise ConfigStoreError(path, f"Cannot remove config ({exc})") from exc
        return True

    def _write_bytes(self, rule_id: str, data: bytes, context: ConfigContext) -> Path:
        path = self.path_for(rule_id, context)
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise ConfigStoreError(path, f"Cannot write config ({exc})") from exc
        self._unlink(self.path_for(rule_id, context.other))
        logger.debug("Rule config written", rule_id=rule_id, path=str(path))
        return path

    def _write_waf_bytes(self, rule_id: str, data: bytes) -> Path:
        path = self.waf_path_for(rule_id)
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise ConfigStoreError(path, f"Cannot write WAF rules ({exc})") from exc
        return path

    @staticmethod
    def _read_bytes(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ConfigStoreError(path, f"Cannot read config ({exc})") from exc
