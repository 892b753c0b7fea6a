"""Tests for semantic rule validation."""

import pytest

from kontainers_proxy.errors import RuleValidationError
from kontainers_proxy.rules.models import (
    AdvancedConfig,
    CacheConfig,
    HealthCheck,
    IpAccessAction,
    IpAccessControl,
    IpAccessRule,
    LoadBalancingTarget,
    ProxyProtocol,
    RateLimitConfig,
    RewriteRule,
    Rule,
    SecurityHeaders,
)
from kontainers_proxy.rules.validation import collect_rule_problems, validate_rule


def _http_rule(**overrides) -> Rule:
    values = dict(
        id="api",
        name="API",
        source_host="example.com",
        source_path="/api",
        target_container="api-service",
        target_port=8080,
    )
    values.update(overrides)
    return Rule(**values)


def _https_rule(**overrides) -> Rule:
    values = dict(
        protocol=ProxyProtocol.HTTPS,
        ssl_enabled=True,
        ssl_cert_path="/etc/ssl/example.crt",
        ssl_key_path="/etc/ssl/example.key",
    )
    values.update(overrides)
    return _http_rule(**values)


def test_valid_rules_pass() -> None:
    assert validate_rule(_http_rule()).id == "api"
    assert collect_rule_problems(_https_rule()) == []
    tcp = Rule(
        id="db",
        name="db",
        source_host="0.0.0.0",
        protocol=ProxyProtocol.TCP,
        target_container="postgres",
        target_port=5432,
    )
    assert collect_rule_problems(tcp) == []


@pytest.mark.parametrize("port", [0, 65536, -1])
def test_port_out_of_range(port: int) -> None:
    problems = collect_rule_problems(_http_rule(target_port=port))
    assert any("targetPort" in item for item in problems)


def test_target_is_required() -> None:
    problems = collect_rule_problems(_http_rule(target_container="", target_port=None))
    assert problems == ["targetContainer/targetPort or loadBalancingTargets required"]


def test_load_balancing_supersedes_single_target() -> None:
    rule = _http_rule(
        target_container="",
        target_port=None,
        load_balancing_targets=(
            LoadBalancingTarget("web-1", 80),
            LoadBalancingTarget("web-2", 70000, weight=0),
        ),
    )
    problems = collect_rule_problems(rule)
    assert len(problems) == 2
    assert "load balancing target 1 port 70000" in problems[0]
    assert "weight" in problems[1]


def test_https_requires_ssl_enabled() -> None:
    problems = collect_rule_problems(_https_rule(ssl_enabled=False))
    assert "HTTPS rules must set sslEnabled" in problems


def test_ssl_requires_cert_and_key() -> None:
    problems = collect_rule_problems(_https_rule(ssl_key_path=""))
    assert any("sslKeyPath are required" in item for item in problems)


def test_cert_without_ssl_is_rejected() -> None:
    problems = collect_rule_problems(_http_rule(ssl_cert_path="/etc/ssl/a.crt"))
    assert any("sslEnabled is false" in item for item in problems)


def test_udp_cannot_terminate_ssl() -> None:
    rule = Rule(
        id="dns",
        name="dns",
        source_host="0.0.0.0",
        protocol=ProxyProtocol.UDP,
        target_container="coredns",
        target_port=53,
        ssl_enabled=True,
        ssl_cert_path="/a.crt",
        ssl_key_path="/a.key",
    )
    assert "UDP rules cannot terminate SSL" in collect_rule_problems(rule)


def test_invalid_domain() -> None:
    problems = collect_rule_problems(_http_rule(domain="not a domain"))
    assert problems == ["invalid domain name: not a domain"]


def test_wildcard_domain_is_allowed() -> None:
    assert collect_rule_problems(_http_rule(domain="*.example.com")) == []


def test_header_values_cannot_break_out_of_directive() -> None:
    rule = _http_rule(headers={"X-Evil": "a; return 200"})
    problems = collect_rule_problems(rule)
    assert problems == ["headers.X-Evil contains a forbidden character"]


def test_path_must_be_absolute() -> None:
    problems = collect_rule_problems(_http_rule(source_path="api"))
    assert any("sourcePath" in item for item in problems)


def test_health_check_codes() -> None:
    rule = _http_rule(health_check=HealthCheck(success_codes="2xx"))
    assert any("successCodes" in item for item in collect_rule_problems(rule))
    ok = _http_rule(health_check=HealthCheck(success_codes="200 204,301-302"))
    assert collect_rule_problems(ok) == []


def test_advanced_checks() -> None:
    adv = AdvancedConfig(
        rate_limit=RateLimitConfig(enabled=True, requests_per_second=0),
        rewrite_rules=(RewriteRule("^/a$", "/b", flag="forever"),),
    )
    problems = collect_rule_problems(_http_rule(advanced_config=adv))
    assert len(problems) == 2


def test_validate_rule_raises_with_all_problems() -> None:
    with pytest.raises(RuleValidationError) as exc_info:
        validate_rule(_http_rule(id="../etc", target_port=0))
    assert exc_info.value.rule_id == "../etc"
    assert len(exc_info.value.problems) == 2


@pytest.mark.parametrize(
    "name", ["X-A v; return 200 pwned; proxy_set_header X-B", "X A", "X-A\n", ""]
)
def test_header_names_must_be_tokens(name: str) -> None:
    problems = collect_rule_problems(_http_rule(headers={name: "v"}))
    assert problems == [f"headers name {name!r} is not a valid header name"]


def test_custom_security_header_names_must_be_tokens() -> None:
    security = SecurityHeaders(custom_headers={"X-Ok": "1", "X-Bad; deny all": "1"})
    adv = AdvancedConfig(security_headers=security)
    problems = collect_rule_problems(_http_rule(advanced_config=adv))
    assert len(problems) == 1
    assert "'X-Bad; deny all'" in problems[0]


@pytest.mark.parametrize(
    "adv, label",
    [
        (
            AdvancedConfig(client_max_body_size="1m; return 200 pwned"),
            "clientMaxBodySize",
        ),
        (AdvancedConfig(proxy_buffer_size="4k;"), "proxyBufferSize"),
        (AdvancedConfig(proxy_buffers="4"), "proxyBuffers"),
        (AdvancedConfig(proxy_busy_buffers_size="big"), "proxyBusyBuffersSize"),
        (
            AdvancedConfig(cache=CacheConfig(enabled=True, duration="10m; allow all")),
            "cache.duration",
        ),
    ],
)
def test_advanced_sizes_are_checked(adv: AdvancedConfig, label: str) -> None:
    problems = collect_rule_problems(_http_rule(advanced_config=adv))
    assert len(problems) == 1
    assert problems[0].startswith(f"invalid {label} ")


def test_advanced_sizes_accept_nginx_units() -> None:
    adv = AdvancedConfig(
        client_max_body_size="50m",
        proxy_buffer_size="16k",
        proxy_buffers="4 32k",
        proxy_busy_buffers_size="64k",
        cache=CacheConfig(enabled=True, duration="10m"),
    )
    assert collect_rule_problems(_http_rule(advanced_config=adv)) == []


def test_ip_access_addresses_are_checked() -> None:
    access = IpAccessControl(
        enabled=True,
        rules=(
            IpAccessRule(IpAccessAction.ALLOW, "10.0.0.0/8"),
            IpAccessRule(IpAccessAction.ALLOW, "2001:db8::/32"),
            IpAccessRule(IpAccessAction.DENY, "all; return 200"),
        ),
    )
    adv = AdvancedConfig(ip_access_control=access)
    problems = collect_rule_problems(_http_rule(advanced_config=adv))
    assert problems == ["invalid ipAccessControl address 'all; return 200'"]
