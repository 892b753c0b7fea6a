"""Proxy rule data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProxyProtocol(str, Enum):
    HTTP = "HTTP"
    HTTPS = "HTTPS"
    TCP = "TCP"
    UDP = "UDP"

    @property
    def is_stream(self) -> bool:
        return self in (ProxyProtocol.TCP, ProxyProtocol.UDP)


class LoadBalancingMethod(str, Enum):
    ROUND_ROBIN = "ROUND_ROBIN"
    LEAST_CONN = "LEAST_CONN"
    IP_HASH = "IP_HASH"
    RANDOM = "RANDOM"


class RateLimitLogLevel(str, Enum):
    INFO = "info"
    NOTICE = "notice"
    WARN = "warn"
    ERROR = "error"


class IpAccessAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class WafMode(str, Enum):
    DETECTION = "detection"
    BLOCKING = "blocking"


class WafRuleset(str, Enum):
    CORE = "core"
    SQL = "sql"
    XSS = "xss"
    LFI = "lfi"
    RFI = "rfi"
    SCANNER = "scanner"
    SESSION = "session"
    PROTOCOL = "protocol"
    CUSTOM = "custom"


@dataclass(frozen=True)
class LoadBalancingTarget:
    container: str
    port: int
    weight: int = 1


@dataclass(frozen=True)
class HealthCheck:
    """Active health probe; ``interval`` and ``timeout`` are in seconds."""

    path: str = "/"
    interval: int = 10
    success_codes: str = "200-399"
    timeout: int = 5
    retries: int = 3


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = False
    duration: str = ""


@dataclass(frozen=True)
class CorsConfig:
    enabled: bool = False
    allow_origin: str = "*"
    allow_methods: str = ""
    allow_headers: str = ""
    allow_credentials: bool = False


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = False
    requests_per_second: int = 10
    burst_size: int = 10
    nodelay: bool = False
    per_ip: bool = True
    zone: str = ""
    log_level: Optional[RateLimitLogLevel] = None
    response_code: Optional[int] = None


@dataclass(frozen=True)
class RewriteRule:
    pattern: str
    replacement: str
    flag: str = "last"


@dataclass(frozen=True)
class SecurityHeaders:
    x_frame_options: str = ""
    x_content_type_options: str = ""
    x_xss_protection: str = ""
    strict_transport_security: str = ""
    content_security_policy: str = ""
    referrer_policy: str = ""
    permissions_policy: str = ""
    custom_headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IpAccessRule:
    action: IpAccessAction
    ip: str
    comment: str = ""


@dataclass(frozen=True)
class IpAccessControl:
    enabled: bool = False
    rules: tuple[IpAccessRule, ...] = ()
    default_action: Optional[IpAccessAction] = None


@dataclass(frozen=True)
class WafConfig:
    enabled: bool = False
    mode: WafMode = WafMode.DETECTION
    rulesets: tuple[WafRuleset, ...] = ()
    custom_rules: str = ""


@dataclass(frozen=True)
class AdvancedConfig:
    proxy_connect_timeout: Optional[int] = None
    proxy_send_timeout: Optional[int] = None
    proxy_read_timeout: Optional[int] = None
    proxy_buffer_size: str = ""
    proxy_buffers: str = ""
    proxy_busy_buffers_size: str = ""
    client_max_body_size: str = ""
    cache: CacheConfig = field(default_factory=CacheConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    rewrite_rules: tuple[RewriteRule, ...] = ()
    security_headers: Optional[SecurityHeaders] = None
    ip_access_control: Optional[IpAccessControl] = None
    waf_config: Optional[WafConfig] = None


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    source_host: str
    target_container: str = ""
    target_port: Optional[int] = None
    protocol: ProxyProtocol = ProxyProtocol.HTTP
    source_path: str = "/"
    target_https: bool = False
    load_balancing_targets: tuple[LoadBalancingTarget, ...] = ()
    load_balancing_method: LoadBalancingMethod = LoadBalancingMethod.ROUND_ROBIN
    ssl_enabled: bool = False
    ssl_cert_path: str = ""
    ssl_key_path: str = ""
    domain: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    response_headers: dict[str, str] = field(default_factory=dict)
    health_check: Optional[HealthCheck] = None
    advanced_config: Optional[AdvancedConfig] = None
    custom_config: str = ""
    enabled: bool = True
    created: int = 0

    @property
    def server_name(self) -> str:
        return self.domain or self.source_host

    @property
    def location_path(self) -> str:
        return self.source_path or "/"

    @property
    def uses_ssl(self) -> bool:
        return self.protocol == ProxyProtocol.HTTPS or self.ssl_enabled

    @property
    def is_load_balanced(self) -> bool:
        return bool(self.load_balancing_targets)

    @property
    def listen_port(self) -> Optional[int]:
        if self.target_port is not None:
            return self.target_port
        if self.load_balancing_targets:
            return self.load_balancing_targets[0].port
        return None
