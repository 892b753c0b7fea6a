from typing import Final


APP_NAME: Final[str] = "kontainers-proxy"
ENV_PREFIX: Final[str] = "KONTAINERS_PROXY_"

DEFAULT_CONFIG_DIR: Final[str] = "/etc/nginx"
ACTIVE_DIRNAME: Final[str] = "conf.d"
TEMPLATES_DIRNAME: Final[str] = "templates"
MODSECURITY_DIRNAME: Final[str] = "modsecurity"
MAIN_CONFIG_FILENAME: Final[str] = "nginx.conf"
DEFAULT_LOG_DIR: Final[str] = "/var/log/nginx"
DEFAULT_ACME_ROOT: Final[str] = "/var/www"
DEFAULT_CACHE_DIR: Final[str] = "/var/cache/nginx"

HTTP_CONFIG_SUFFIX: Final[str] = ".conf"
STREAM_CONFIG_SUFFIX: Final[str] = ".stream"
RULE_DEFINITION_SUFFIX: Final[str] = ".json"
PROXY_HEADERS_TEMPLATE: Final[str] = "proxy_headers.conf"
WAF_RULES_SUFFIX: Final[str] = "-modsec.conf"

DEFAULT_RATE_LIMIT_ZONE: Final[str] = "one"
DEFAULT_RATE_LIMIT_RPS: Final[int] = 10
DEFAULT_CACHE_ZONE: Final[str] = "zone1"
DEFAULT_COMMAND_TIMEOUT: Final[float] = 30.0

PORT_MIN: Final[int] = 1
PORT_MAX: Final[int] = 65535

REWRITE_FLAGS: Final[tuple[str, ...]] = ("last", "break", "redirect", "permanent")
