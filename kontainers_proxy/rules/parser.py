"""Parse and serialize proxy rule documents (camelCase JSON/YAML)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from kontainers_proxy.errors import RuleValidationError
from kontainers_proxy.rules.models import (
    AdvancedConfig,
    CacheConfig,
    CorsConfig,
    HealthCheck,
    IpAccessAction,
    IpAccessControl,
    IpAccessRule,
    LoadBalancingMethod,
    LoadBalancingTarget,
    ProxyProtocol,
    RateLimitConfig,
    RateLimitLogLevel,
    RewriteRule,
    Rule,
    SecurityHeaders,
    WafConfig,
    WafMode,
    WafRuleset,
)
from kontainers_proxy.schema import RuleSchemaRepository, schema_errors


def load_rule_document(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise RuleValidationError([f"cannot parse {path.name}: {exc}"]) from exc
    if not isinstance(raw, dict):
        raise RuleValidationError([f"{path.name} must contain a mapping"])
    return raw


def parse_rule_file(path: Path) -> Rule:
    return parse_rule(load_rule_document(path))


def parse_rule(payload: Mapping[str, Any]) -> Rule:
    problems = schema_errors(RuleSchemaRepository().validator(), dict(payload))
    if problems:
        raise RuleValidationError(problems, rule_id=_maybe_str(payload.get("id")))

    lb_method = LoadBalancingMethod.ROUND_ROBIN
    lb_raw = payload.get("loadBalancingTargets") or []
    legacy_lb = payload.get("loadBalancing") or {}
    if legacy_lb:
        lb_raw = lb_raw or legacy_lb.get("targets") or []
        lb_method = LoadBalancingMethod(legacy_lb.get("method", lb_method.value))

    return Rule(
        id=str(payload["id"]),
        name=str(payload.get("name", "")),
        source_host=str(payload.get("sourceHost", "")),
        source_path=str(payload.get("sourcePath") or "/"),
        target_container=str(payload.get("targetContainer") or ""),
        target_port=payload.get("targetPort"),
        target_https=bool(payload.get("targetHttps", False)),
        protocol=ProxyProtocol(payload["protocol"]),
        load_balancing_targets=tuple(
            LoadBalancingTarget(
                container=str(item["container"]),
                port=int(item["port"]),
                weight=int(item.get("weight", 1)),
            )
            for item in lb_raw
        ),
        load_balancing_method=lb_method,
        ssl_enabled=bool(payload.get("sslEnabled", False)),
        ssl_cert_path=str(payload.get("sslCertPath") or ""),
        ssl_key_path=str(payload.get("sslKeyPath") or ""),
        domain=str(payload.get("domain") or ""),
        headers=dict(payload.get("headers") or {}),
        response_headers=dict(payload.get("responseHeaders") or {}),
        health_check=_parse_health_check(payload.get("healthCheck")),
        advanced_config=_parse_advanced(payload.get("advancedConfig")),
        custom_config=str(payload.get("customConfig") or ""),
        enabled=bool(payload.get("enabled", True)),
        created=int(payload.get("created", 0)),
    )


def serialize_rule(rule: Rule) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": rule.id,
        "name": rule.name,
        "sourceHost": rule.source_host,
        "sourcePath": rule.source_path,
        "targetContainer": rule.target_container,
        "targetPort": rule.target_port,
        "protocol": rule.protocol.value,
        "sslEnabled": rule.ssl_enabled,
        "enabled": rule.enabled,
        "created": rule.created,
    }
    if rule.target_https:
        payload["targetHttps"] = True
    if rule.load_balancing_targets:
        payload["loadBalancing"] = {
            "method": rule.load_balancing_method.value,
            "targets": [
                {"container": item.container, "port": item.port, "weight": item.weight}
                for item in rule.load_balancing_targets
            ],
        }
    if rule.ssl_cert_path:
        payload["sslCertPath"] = rule.ssl_cert_path
    if rule.ssl_key_path:
        payload["sslKeyPath"] = rule.ssl_key_path
    if rule.domain:
        payload["domain"] = rule.domain
    if rule.headers:
        payload["headers"] = dict(rule.headers)
    if rule.response_headers:
        payload["responseHeaders"] = dict(rule.response_headers)
    if rule.health_check is not None:
        check = rule.health_check
        payload["healthCheck"] = {
            "path": check.path,
            "interval": check.interval,
            "successCodes": check.success_codes,
            "timeout": check.timeout,
            "retries": check.retries,
        }
    if rule.advanced_config is not None:
        payload["advancedConfig"] = _serialize_advanced(rule.advanced_config)
    if rule.custom_config:
        payload["customConfig"] = rule.custom_config
    return payload


def _maybe_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _parse_health_check(raw: Optional[Mapping[str, Any]]) -> Optional[HealthCheck]:
    if not raw:
        return None
    defaults = HealthCheck()
    return HealthCheck(
        path=str(raw.get("path") or defaults.path),
        interval=int(raw.get("interval", defaults.interval)),
        success_codes=str(raw.get("successCodes") or defaults.success_codes),
        timeout=int(raw.get("timeout", defaults.timeout)),
        retries=int(raw.get("retries", defaults.retries)),
    )


def _parse_advanced(raw: Optional[Mapping[str, Any]]) -> Optional[AdvancedConfig]:
    if not raw:
        return None

    cache_raw = raw.get("cache") or {}
    cors_raw = raw.get("cors") or {}
    rate_raw = raw.get("rateLimit") or {}
    security_raw = raw.get("securityHeaders")
    access_raw = raw.get("ipAccessControl")
    waf_raw = raw.get("wafConfig")

    return AdvancedConfig(
        proxy_connect_timeout=raw.get("proxyConnectTimeout"),
        proxy_send_timeout=raw.get("proxySendTimeout"),
        proxy_read_timeout=raw.get("proxyReadTimeout"),
        proxy_buffer_size=str(raw.get("proxyBufferSize") or ""),
        proxy_buffers=str(raw.get("proxyBuffers") or ""),
        proxy_busy_buffers_size=str(raw.get("proxyBusyBuffersSize") or ""),
        client_max_body_size=str(raw.get("clientMaxBodySize") or ""),
        cache=CacheConfig(
            enabled=bool(cache_raw.get("enabled", False)),
            duration=str(cache_raw.get("duration") or ""),
        ),
        cors=CorsConfig(
            enabled=bool(cors_raw.get("enabled", False)),
            allow_origin=str(cors_raw.get("allowOrigin") or "*"),
            allow_methods=str(cors_raw.get("allowMethods") or ""),
            allow_headers=str(cors_raw.get("allowHeaders") or ""),
            allow_credentials=bool(cors_raw.get("allowCredentials", False)),
        ),
        rate_limit=RateLimitConfig(
            enabled=bool(rate_raw.get("enabled", False)),
            requests_per_second=int(rate_raw.get("requestsPerSecond", 10)),
            burst_size=int(rate_raw.get("burstSize", 10)),
            nodelay=bool(rate_raw.get("nodelay", False)),
            per_ip=bool(rate_raw.get("perIp", True)),
            zone=str(rate_raw.get("zone") or ""),
            log_level=(
                RateLimitLogLevel(rate_raw["logLevel"])
                if rate_raw.get("logLevel")
                else None
            ),
            response_code=rate_raw.get("responseCode"),
        ),
        rewrite_rules=tuple(
            RewriteRule(
                pattern=str(item["pattern"]),
                replacement=str(item["replacement"]),
                flag=str(item.get("flag") or "last"),
            )
            for item in raw.get("rewriteRules") or []
        ),
        security_headers=_parse_security_headers(security_raw),
        ip_access_control=_parse_ip_access(access_raw),
        waf_config=_parse_waf(waf_raw),
    )


def _parse_security_headers(
    raw: Optional[Mapping[str, Any]],
) -> Optional[SecurityHeaders]:
    if not raw:
        return None
    return SecurityHeaders(
        x_frame_options=str(raw.get("xFrameOptions") or ""),
        x_content_type_options=str(raw.get("xContentTypeOptions") or ""),
        x_xss_protection=str(raw.get("xXssProtection") or ""),
        strict_transport_security=str(raw.get("strictTransportSecurity") or ""),
        content_security_policy=str(raw.get("contentSecurityPolicy") or ""),
        referrer_policy=str(raw.get("referrerPolicy") or ""),
        permissions_policy=str(raw.get("permissionsPolicy") or ""),
        custom_headers=dict(raw.get("customHeaders") or {}),
    )


def _parse_ip_access(raw: Optional[Mapping[str, Any]]) -> Optional[IpAccessControl]:
    if not raw:
        return None
    default_action = raw.get("defaultAction")
    return IpAccessControl(
        enabled=bool(raw.get("enabled", False)),
        rules=tuple(
            IpAccessRule(
                action=IpAccessAction(item["action"]),
                ip=str(item["ip"]),
                comment=str(item.get("comment") or ""),
            )
            for item in raw.get("rules") or []
        ),
        default_action=IpAccessAction(default_action) if default_action else None,
    )


def _parse_waf(raw: Optional[Mapping[str, Any]]) -> Optional[WafConfig]:
    if not raw:
        return None
    return WafConfig(
        enabled=bool(raw.get("enabled", False)),
        mode=WafMode(raw.get("mode") or WafMode.DETECTION.value),
        rulesets=tuple(WafRuleset(item) for item in raw.get("rulesets") or []),
        custom_rules=str(raw.get("customRules") or ""),
    )


def _serialize_advanced(adv: AdvancedConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "proxyConnectTimeout": adv.proxy_connect_timeout,
        "proxySendTimeout": adv.proxy_send_timeout,
        "proxyReadTimeout": adv.proxy_read_timeout,
        "proxyBufferSize": adv.proxy_buffer_size,
        "proxyBuffers": adv.proxy_buffers,
        "proxyBusyBuffersSize": adv.proxy_busy_buffers_size,
        "clientMaxBodySize": adv.client_max_body_size,
        "cache": {"enabled": adv.cache.enabled, "duration": adv.cache.duration},
        "cors": {
            "enabled": adv.cors.enabled,
            "allowOrigin": adv.cors.allow_origin,
            "allowMethods": adv.cors.allow_methods,
            "allowHeaders": adv.cors.allow_headers,
            "allowCredentials": adv.cors.allow_credentials,
        },
        "rateLimit": {
            "enabled": adv.rate_limit.enabled,
            "requestsPerSecond": adv.rate_limit.requests_per_second,
            "burstSize": adv.rate_limit.burst_size,
            "nodelay": adv.rate_limit.nodelay,
            "perIp": adv.rate_limit.per_ip,
            "zone": adv.rate_limit.zone,
            "logLevel": (
                adv.rate_limit.log_level.value if adv.rate_limit.log_level else None
            ),
            "responseCode": adv.rate_limit.response_code,
        },
        "rewriteRules": [
            {
                "pattern": item.pattern,
                "replacement": item.replacement,
                "flag": item.flag,
            }
            for item in adv.rewrite_rules
        ],
    }
    if adv.security_headers is not None:
        sec = adv.security_headers
        payload["securityHeaders"] = {
            "xFrameOptions": sec.x_frame_options,
            "xContentTypeOptions": sec.x_content_type_options,
            "xXssProtection": sec.x_xss_protection,
            "strictTransportSecurity": sec.strict_transport_security,
            "contentSecurityPolicy": sec.content_security_policy,
            "referrerPolicy": sec.referrer_policy,
            "permissionsPolicy": sec.permissions_policy,
            "customHeaders": dict(sec.custom_headers),
        }
    if adv.ip_access_control is not None:
        access = adv.ip_access_control
        payload["ipAccessControl"] = {
            "enabled": access.enabled,
            "rules": [
                {"action": item.action.value, "ip": item.ip, "comment": item.comment}
                for item in access.rules
            ],
            "defaultAction": (
                access.default_action.value if access.default_action else None
            ),
        }
    if adv.waf_config is not None:
        waf = adv.waf_config
        payload["wafConfig"] = {
            "enabled": waf.enabled,
            "mode": waf.mode.value,
            "rulesets": [item.value for item in waf.rulesets],
            "customRules": waf.custom_rules,
        }
    return payload
