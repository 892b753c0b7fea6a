"""Semantic checks a rule must pass before any file is touched."""

from __future__ import annotations

import re

from kontainers_proxy.constants import PORT_MAX, PORT_MIN, REWRITE_FLAGS
from kontainers_proxy.errors import RuleValidationError
from kontainers_proxy.rules.models import AdvancedConfig, ProxyProtocol, Rule

_DOMAIN_RE = re.compile(
    r"^(\*\.)?[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9]"
    r"(?:\.[a-zA-Z0-9-]{1,63})*\.[a-zA-Z]{2,}$"
)
_RULE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SUCCESS_CODES_RE = re.compile(r"^\d{3}(-\d{3})?([ ,]+\d{3}(-\d{3})?)*$")
_UNSAFE_VALUE_CHARS = ("\n", "\r", ";", "{", "}")
_HEADER_NAME_RE = re.compile(r"^[A-Za-z0-9!#$%&'*+.^_`|~-]+$")
_SIZE_RE = re.compile(r"^\d+[kKmMgG]?$")
_BUFFERS_RE = re.compile(r"^\d+ \d+[kKmM]?$")
_DURATION_RE = re.compile(r"^\d+(ms|[smhdwMy])?$")
_ADDRESS_RE = re.compile(r"^[0-9A-Fa-f:.]+(/\d{1,3})?$")


def _port_ok(port: object) -> bool:
    if not isinstance(port, int) or isinstance(port, bool):
        return False
    return PORT_MIN <= port <= PORT_MAX


def _port_problem(label: str, port: object) -> str:
    return f"{label} {port} is outside {PORT_MIN}..{PORT_MAX}"


def collect_rule_problems(rule: Rule) -> list[str]:
    problems: list[str] = []

    if not rule.id or not _RULE_ID_RE.match(rule.id):
        problems.append(f"id {rule.id!r} must be alphanumeric with . _ -")

    if not isinstance(rule.protocol, ProxyProtocol):
        problems.append(f"unknown protocol {rule.protocol!r}")
        return problems

    has_single = bool(rule.target_container) or rule.target_port is not None
    if not has_single and not rule.load_balancing_targets:
        problems.append("targetContainer/targetPort or loadBalancingTargets required")
    if has_single and not rule.load_balancing_targets:
        if not rule.target_container:
            problems.append("targetContainer is required")
        if not _port_ok(rule.target_port):
            problems.append(_port_problem("targetPort", rule.target_port))
    elif rule.target_port is not None and not _port_ok(rule.target_port):
        problems.append(_port_problem("targetPort", rule.target_port))

    for index, target in enumerate(rule.load_balancing_targets):
        if not target.container:
            problems.append(f"load balancing target {index} has no container")
        if not _port_ok(target.port):
            problems.append(
                _port_problem(f"load balancing target {index} port", target.port)
            )
        if target.weight < 1:
            problems.append(f"load balancing target {index} weight must be >= 1")

    has_cert = bool(rule.ssl_cert_path)
    has_key = bool(rule.ssl_key_path)
    if rule.protocol == ProxyProtocol.HTTPS and not rule.ssl_enabled:
        problems.append("HTTPS rules must set sslEnabled")
    if rule.ssl_enabled and not (has_cert and has_key):
        problems.append("sslCertPath and sslKeyPath are required when SSL is enabled")
    if not rule.ssl_enabled and (has_cert or has_key):
        problems.append("sslCertPath/sslKeyPath given but sslEnabled is false")
    if rule.protocol == ProxyProtocol.UDP and rule.ssl_enabled:
        problems.append("UDP rules cannot terminate SSL")

    if rule.protocol.is_stream:
        if not rule.source_host:
            problems.append("sourceHost is required as bind address for stream rules")
    elif not rule.server_name:
        problems.append("sourceHost or domain is required")

    if rule.domain and not _DOMAIN_RE.match(rule.domain):
        problems.append(f"invalid domain name: {rule.domain}")

    if not rule.location_path.startswith(("/", "~", "=", "@")):
        problems.append(f"sourcePath {rule.source_path!r} must start with /")

    header_maps = (
        ("headers", rule.headers),
        ("responseHeaders", rule.response_headers),
    )
    for label, mapping in header_maps:
        for name, value in mapping.items():
            if not _HEADER_NAME_RE.fullmatch(name):
                problems.append(f"{label} name {name!r} is not a valid header name")
            if any(char in value for char in _UNSAFE_VALUE_CHARS):
                problems.append(f"{label}.{name} contains a forbidden character")

    if rule.health_check is not None:
        check = rule.health_check
        if not check.path.startswith("/"):
            problems.append("healthCheck.path must start with /")
        if check.interval < 1 or check.timeout < 1 or check.retries < 1:
            problems.append("healthCheck interval, timeout and retries must be >= 1")
        if not _SUCCESS_CODES_RE.match(check.success_codes.strip()):
            problems.append(f"invalid healthCheck.successCodes {check.success_codes!r}")

    adv = rule.advanced_config
    if adv is not None:
        for flag in (item.flag for item in adv.rewrite_rules):
            if flag not in REWRITE_FLAGS:
                allowed = ", ".join(REWRITE_FLAGS)
                problems.append(f"rewrite flag {flag!r} must be one of {allowed}")
        if adv.rate_limit.enabled and adv.rate_limit.requests_per_second < 1:
            problems.append("rateLimit.requestsPerSecond must be >= 1")
        problems.extend(_advanced_value_problems(adv))

    return problems


def _advanced_value_problems(adv: AdvancedConfig) -> list[str]:
    problems: list[str] = []
    for label, value, pattern in (
        ("proxyBufferSize", adv.proxy_buffer_size, _SIZE_RE),
        ("proxyBuffers", adv.proxy_buffers, _BUFFERS_RE),
        ("proxyBusyBuffersSize", adv.proxy_busy_buffers_size, _SIZE_RE),
        ("clientMaxBodySize", adv.client_max_body_size, _SIZE_RE),
        ("cache.duration", adv.cache.duration, _DURATION_RE),
    ):
        if value and not pattern.fullmatch(value):
            problems.append(f"invalid {label} {value!r}")

    security = adv.security_headers
    if security is not None:
        for name in security.custom_headers:
            if not _HEADER_NAME_RE.fullmatch(name):
                problems.append(
                    f"securityHeaders.customHeaders name {name!r} is not a valid "
                    "header name"
                )

    access = adv.ip_access_control
    if access is not None:
        for entry in access.rules:
            if not _ADDRESS_RE.fullmatch(entry.ip):
                problems.append(f"invalid ipAccessControl address {entry.ip!r}")
    return problems


def validate_rule(rule: Rule) -> Rule:
    problems = collect_rule_problems(rule)
    if problems:
        raise RuleValidationError(problems, rule_id=rule.id or None)
    return rule
