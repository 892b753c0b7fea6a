"""Per-protocol rule compilers.

``generate`` is the public entry point: it is pure, and equal rules always
produce byte-identical text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from kontainers_proxy.constants import (
    DEFAULT_ACME_ROOT,
    DEFAULT_CACHE_ZONE,
    DEFAULT_CONFIG_DIR,
    DEFAULT_LOG_DIR,
    DEFAULT_RATE_LIMIT_RPS,
    DEFAULT_RATE_LIMIT_ZONE,
    MODSECURITY_DIRNAME,
    PROXY_HEADERS_TEMPLATE,
    TEMPLATES_DIRNAME,
)
from kontainers_proxy.errors import CompileError
from kontainers_proxy.nginx.builder import Block, ConfigFile, quote
from kontainers_proxy.nginx.modsecurity import waf_config_for, waf_rules_path
from kontainers_proxy.rules.models import (
    AdvancedConfig,
    HealthCheck,
    LoadBalancingMethod,
    LoadBalancingTarget,
    ProxyProtocol,
    RateLimitConfig,
    Rule,
)
from kontainers_proxy.utils import nginx_identifier

SSL_PROTOCOLS = ("TLSv1.2", "TLSv1.3")
HSTS_VALUE = "max-age=31536000; includeSubDomains"


@dataclass(frozen=True)
class CompilerOptions:
    templates_dir: Path = Path(DEFAULT_CONFIG_DIR) / TEMPLATES_DIRNAME
    log_dir: str = DEFAULT_LOG_DIR
    acme_root: str = DEFAULT_ACME_ROOT
    modsecurity_dir: Path = Path(DEFAULT_CONFIG_DIR) / MODSECURITY_DIRNAME
    health_check_directive: bool = True


def upstream_name(rule: Rule) -> str:
    return f"backend_{nginx_identifier(rule.id)}"


def health_match_name(rule: Rule) -> str:
    return f"health_{nginx_identifier(rule.id)}"


def health_probe_path(rule: Rule) -> str:
    return f"/_health_check_{nginx_identifier(rule.id)}"


def rate_limit_zone(rule: Rule, limit: RateLimitConfig) -> tuple[str, bool]:
    """Return the zone a rule limits against and whether the rule declares it.

    The shared bootstrap zone only fits the default per-IP rate; any other
    rate or key gets a zone of its own.
    """
    if limit.zone:
        return limit.zone, True
    if limit.per_ip and limit.requests_per_second == DEFAULT_RATE_LIMIT_RPS:
        return DEFAULT_RATE_LIMIT_ZONE, False
    return f"limit_{nginx_identifier(rule.id)}", True


def _add_server(upstream: Block, target: LoadBalancingTarget) -> None:
    upstream.add(
        "server", f"{target.container}:{target.port}", f"weight={target.weight}"
    )


class IRuleCompiler(ABC):
    def __init__(self, options: Optional[CompilerOptions] = None) -> None:
        self.options = options or CompilerOptions()

    @abstractmethod
    def build(self, rule: Rule) -> ConfigFile:
        """Return the structured config for ``rule``."""

    def compile(self, rule: Rule) -> str:
        return self.build(rule).render()

    @staticmethod
    def _header(config: ConfigFile, rule: Rule) -> None:
        config.comment(f"Proxy rule {rule.name or rule.id} ({rule.id})")

    @staticmethod
    def _require_target(rule: Rule) -> None:
        if rule.load_balancing_targets:
            return
        if not rule.target_container or rule.target_port is None:
            raise CompileError(rule.id, "rule has neither a target nor upstreams")


class HttpRuleCompiler(IRuleCompiler):
    """Compile HTTP and HTTPS rules into ``server`` blocks for the http context."""

    def build(self, rule: Rule) -> ConfigFile:
        self._require_target(rule)
        config = ConfigFile()
        self._header(config, rule)

        adv = rule.advanced_config
        if adv is not None and adv.rate_limit.enabled:
            limit = adv.rate_limit
            zone, declared = rate_limit_zone(rule, limit)
            if declared:
                key = "$binary_remote_addr" if limit.per_ip else "$server_name"
                config.add(
                    "limit_req_zone",
                    key,
                    f"zone={zone}:10m",
                    f"rate={limit.requests_per_second}r/s",
                )

        if rule.health_check is not None:
            self._add_health_match(config, rule, rule.health_check)

        if self._needs_upstream(rule):
            self._add_upstream(config, rule)

        if rule.uses_ssl:
            self._add_redirect_server(config, rule)

        server = config.block("server")
        if rule.uses_ssl:
            server.add("listen", "443", "ssl")
        else:
            server.add("listen", "80")
        server.add("server_name", rule.server_name)
        server.add("access_log", f"{self.options.log_dir}/{rule.id}_access.log")
        server.add("error_log", f"{self.options.log_dir}/{rule.id}_error.log")
        if rule.uses_ssl:
            self._add_ssl(server, rule)

        location = server.block("location", rule.location_path)
        self._add_location_body(location, rule)

        if rule.health_check is not None:
            self._add_health_probe(server, rule, rule.health_check)

        if rule.custom_config:
            server.comment("custom configuration")
            server.raw(rule.custom_config)
        return config

    def _needs_upstream(self, rule: Rule) -> bool:
        return rule.is_load_balanced or rule.health_check is not None

    def _proxy_target(self, rule: Rule) -> str:
        scheme = "https" if rule.target_https else "http"
        if self._needs_upstream(rule):
            return f"{scheme}://{upstream_name(rule)}"
        return f"{scheme}://{rule.target_container}:{rule.target_port}"

    def _add_upstream(self, config: ConfigFile, rule: Rule) -> None:
        upstream = config.block("upstream", upstream_name(rule))
        upstream.add("zone", upstream_name(rule), "64k")
        method = rule.load_balancing_method
        if method == LoadBalancingMethod.LEAST_CONN:
            upstream.add("least_conn")
        elif method == LoadBalancingMethod.IP_HASH:
            upstream.add("ip_hash")
        elif method == LoadBalancingMethod.RANDOM:
            upstream.add("random")

        if rule.load_balancing_targets:
            for target in rule.load_balancing_targets:
                _add_server(upstream, target)
        else:
            upstream.add("server", f"{rule.target_container}:{rule.target_port}")

    def _add_redirect_server(self, config: ConfigFile, rule: Rule) -> None:
        redirect = config.block("server")
        redirect.add("listen", "80")
        redirect.add("server_name", rule.server_name)
        acme = redirect.block("location", "/.well-known/acme-challenge/")
        acme.add("root", self.options.acme_root)
        acme.add("try_files", "$uri", "=404")
        fallback = redirect.block("location", "/")
        fallback.add("return", "301", "https://$host$request_uri")

    def _add_ssl(self, server: Block, rule: Rule) -> None:
        server.add("ssl_certificate", rule.ssl_cert_path)
        server.add("ssl_certificate_key", rule.ssl_key_path)
        server.add("ssl_session_timeout", "1d")
        server.add("ssl_session_cache", "shared:SSL:50m")
        server.add("ssl_protocols", *SSL_PROTOCOLS)
        server.add("ssl_prefer_server_ciphers", "on")

    def _add_location_body(self, location: Block, rule: Rule) -> None:
        location.add("proxy_pass", self._proxy_target(rule))
        location.add("proxy_http_version", "1.1")
        location.add(
            "include", str(self.options.templates_dir / PROXY_HEADERS_TEMPLATE)
        )
        for name, value in sorted(rule.headers.items()):
            location.add("proxy_set_header", name, quote(value))
        for name, value in sorted(rule.response_headers.items()):
            location.add("add_header", name, quote(value))
        if rule.uses_ssl:
            location.add(
                "add_header", "Strict-Transport-Security", quote(HSTS_VALUE), "always"
            )

        if rule.health_check is not None:
            check = rule.health_check
            args = (
                f"uri={check.path}",
                f"interval={check.interval}s",
                f"fails={check.retries}",
                "passes=1",
                f"match={health_match_name(rule)}",
            )
            if self.options.health_check_directive:
                location.add("health_check", *args)
            else:
                location.comment(" ".join(("health_check", *args)) + ";")

        if rule.advanced_config is not None:
            self._add_advanced(location, rule, rule.advanced_config)

        if waf_config_for(rule) is not None:
            location.add("modsecurity", "on")
            location.add(
                "modsecurity_rules_file",
                str(waf_rules_path(self.options.modsecurity_dir, rule.id)),
            )

    def _add_advanced(self, location: Block, rule: Rule, adv: AdvancedConfig) -> None:
        for name, seconds in (
            ("proxy_connect_timeout", adv.proxy_connect_timeout),
            ("proxy_send_timeout", adv.proxy_send_timeout),
            ("proxy_read_timeout", adv.proxy_read_timeout),
        ):
            if seconds is not None:
                location.add(name, f"{seconds}s")

        for name, value in (
            ("proxy_buffer_size", adv.proxy_buffer_size),
            ("proxy_buffers", adv.proxy_buffers),
            ("proxy_busy_buffers_size", adv.proxy_busy_buffers_size),
            ("client_max_body_size", adv.client_max_body_size),
        ):
            if value:
                location.add(name, value)

        if adv.cache.enabled:
            location.add("proxy_cache", DEFAULT_CACHE_ZONE)
            if adv.cache.duration:
                location.add("proxy_cache_valid", "200", adv.cache.duration)

        if adv.cors.enabled:
            cors = adv.cors
            credentials = "true" if cors.allow_credentials else ""
            for header, value in (
                ("Access-Control-Allow-Origin", cors.allow_origin or "*"),
                ("Access-Control-Allow-Methods", cors.allow_methods),
                ("Access-Control-Allow-Headers", cors.allow_headers),
                ("Access-Control-Allow-Credentials", credentials),
            ):
                if value:
                    location.add("add_header", header, quote(value))

        limit = adv.rate_limit
        if limit.enabled:
            zone, _ = rate_limit_zone(rule, limit)
            limit_args = [f"zone={zone}", f"burst={limit.burst_size}"]
            if limit.nodelay:
                limit_args.append("nodelay")
            location.add("limit_req", *limit_args)
            if limit.log_level is not None:
                location.add("limit_req_log_level", limit.log_level.value)
            if limit.response_code is not None:
                location.add("limit_req_status", str(limit.response_code))

        for rewrite in adv.rewrite_rules:
            location.add(
                "rewrite",
                quote(rewrite.pattern),
                quote(rewrite.replacement),
                rewrite.flag,
            )

        security = adv.security_headers
        if security is not None:
            for header, value in (
                ("X-Frame-Options", security.x_frame_options),
                ("X-Content-Type-Options", security.x_content_type_options),
                ("X-XSS-Protection", security.x_xss_protection),
                ("Strict-Transport-Security", security.strict_transport_security),
                ("Content-Security-Policy", security.content_security_policy),
                ("Referrer-Policy", security.referrer_policy),
                ("Permissions-Policy", security.permissions_policy),
            ):
                if value:
                    location.add("add_header", header, quote(value), "always")
            for header, value in sorted(security.custom_headers.items()):
                location.add("add_header", header, quote(value), "always")

        access = adv.ip_access_control
        if access is not None and access.enabled:
            for entry in access.rules:
                if entry.comment:
                    location.comment(entry.comment)
                location.add(entry.action.value, entry.ip)
            if access.default_action is not None:
                location.add(access.default_action.value, "all")

    def _add_health_match(
        self, config: ConfigFile, rule: Rule, check: HealthCheck
    ) -> None:
        codes = check.success_codes.replace(",", " ").split()
        if self.options.health_check_directive:
            config.block("match", health_match_name(rule)).add("status", *codes)
        else:
            status = " ".join(codes)
            config.comment(f"match {health_match_name(rule)} {{ status {status}; }}")

    def _add_health_probe(self, server: Block, rule: Rule, check: HealthCheck) -> None:
        probe = server.block("location", "=", health_probe_path(rule))
        probe.add("internal")
        probe.add("proxy_pass", f"{self._proxy_target(rule)}{check.path}")
        probe.add("proxy_connect_timeout", f"{check.timeout}s")
        probe.add("proxy_read_timeout", f"{check.timeout}s")


class StreamRuleCompiler(IRuleCompiler):
    """Compile TCP and UDP rules into ``server`` blocks for the stream context.

    HTTP-only fields (path, headers, CORS, cache, rewrites) are ignored.
    """

    def build(self, rule: Rule) -> ConfigFile:
        self._require_target(rule)
        port = rule.listen_port
        if port is None:
            raise CompileError(rule.id, "stream rule has no port to listen on")

        config = ConfigFile()
        self._header(config, rule)

        if rule.is_load_balanced:
            upstream = config.block("upstream", upstream_name(rule))
            method = rule.load_balancing_method
            if method == LoadBalancingMethod.LEAST_CONN:
                upstream.add("least_conn")
            elif method == LoadBalancingMethod.IP_HASH:
                upstream.add("hash", "$remote_addr", "consistent")
            elif method == LoadBalancingMethod.RANDOM:
                upstream.add("random")
            for target in rule.load_balancing_targets:
                _add_server(upstream, target)
            backend = upstream_name(rule)
        else:
            backend = f"{rule.target_container}:{rule.target_port}"

        server = config.block("server")
        listen = [f"{rule.source_host}:{port}"]
        if rule.protocol == ProxyProtocol.UDP:
            listen.append("udp")
        elif rule.ssl_enabled:
            listen.append("ssl")
        server.add("listen", *listen)
        server.add("proxy_pass", backend)
        server.add("error_log", f"{self.options.log_dir}/{rule.id}_error.log")

        adv = rule.advanced_config
        if rule.protocol == ProxyProtocol.TCP:
            connect = adv.proxy_connect_timeout if adv is not None else None
            if connect is None:
                connect = 1
            server.add("proxy_connect_timeout", f"{connect}s")
        if adv is not None and adv.proxy_read_timeout is not None:
            server.add("proxy_timeout", f"{adv.proxy_read_timeout}s")

        if rule.protocol == ProxyProtocol.TCP and rule.ssl_enabled:
            server.add("ssl_certificate", rule.ssl_cert_path)
            server.add("ssl_certificate_key", rule.ssl_key_path)
            server.add("ssl_protocols", *SSL_PROTOCOLS)

        access = adv.ip_access_control if adv is not None else None
        if access is not None and access.enabled:
            for entry in access.rules:
                server.add(entry.action.value, entry.ip)
            if access.default_action is not None:
                server.add(access.default_action.value, "all")
        return config


def compiler_for(
    protocol: ProxyProtocol, options: Optional[CompilerOptions] = None
) -> IRuleCompiler:
    if protocol in (ProxyProtocol.HTTP, ProxyProtocol.HTTPS):
        return HttpRuleCompiler(options)
    if protocol in (ProxyProtocol.TCP, ProxyProtocol.UDP):
        return StreamRuleCompiler(options)
    raise CompileError("?", f"unsupported protocol {protocol!r}")


def build_config(rule: Rule, options: Optional[CompilerOptions] = None) -> ConfigFile:
    return compiler_for(rule.protocol, options).build(rule)


def generate(rule: Rule, options: Optional[CompilerOptions] = None) -> str:
    return compiler_for(rule.protocol, options).compile(rule)
