"""Bootstrap files the per-rule configs depend on."""

from __future__ import annotations

from pathlib import Path

from kontainers_proxy.constants import (
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_ZONE,
    DEFAULT_LOG_DIR,
    DEFAULT_RATE_LIMIT_RPS,
    DEFAULT_RATE_LIMIT_ZONE,
    HTTP_CONFIG_SUFFIX,
    STREAM_CONFIG_SUFFIX,
)
from kontainers_proxy.nginx.builder import ConfigFile

FORWARDING_HEADERS: tuple[tuple[str, str], ...] = (
    ("Host", "$host"),
    ("X-Real-IP", "$remote_addr"),
    ("X-Forwarded-For", "$proxy_add_x_forwarded_for"),
    ("X-Forwarded-Proto", "$scheme"),
    ("Upgrade", "$http_upgrade"),
    ("Connection", "$connection_upgrade"),
)


def build_main_config(
    active_dir: Path,
    log_dir: str = DEFAULT_LOG_DIR,
    cache_dir: str = DEFAULT_CACHE_DIR,
) -> ConfigFile:
    config = ConfigFile()
    config.comment("Managed by kontainers-proxy")
    config.add("worker_processes", "auto")
    config.add("error_log", f"{log_dir}/error.log")

    config.block("events").add("worker_connections", "1024")

    http = config.block("http")
    http.add("default_type", "application/octet-stream")
    http.add("sendfile", "on")
    http.add("keepalive_timeout", "65")
    http.add("access_log", f"{log_dir}/access.log")
    http.add(
        "limit_req_zone",
        "$binary_remote_addr",
        f"zone={DEFAULT_RATE_LIMIT_ZONE}:10m",
        f"rate={DEFAULT_RATE_LIMIT_RPS}r/s",
    )
    http.add(
        "proxy_cache_path",
        cache_dir,
        "levels=1:2",
        f"keys_zone={DEFAULT_CACHE_ZONE}:10m",
        "max_size=1g",
        "inactive=60m",
        "use_temp_path=off",
    )
    upgrade = http.block("map", "$http_upgrade", "$connection_upgrade")
    upgrade.add("default", "upgrade")
    upgrade.add('""', "close")
    http.add("include", f"{active_dir}/*{HTTP_CONFIG_SUFFIX}")

    config.block("stream").add("include", f"{active_dir}/*{STREAM_CONFIG_SUFFIX}")
    return config


def render_main_config(
    active_dir: Path,
    log_dir: str = DEFAULT_LOG_DIR,
    cache_dir: str = DEFAULT_CACHE_DIR,
) -> str:
    return build_main_config(active_dir, log_dir, cache_dir).render()


def render_proxy_headers() -> str:
    config = ConfigFile()
    config.comment("Default forwarding headers included by every HTTP location")
    for name, value in FORWARDING_HEADERS:
        config.add("proxy_set_header", name, value)
    return config.render()
