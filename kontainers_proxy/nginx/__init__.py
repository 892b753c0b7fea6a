from kontainers_proxy.nginx.compilers import CompilerOptions, generate
from kontainers_proxy.nginx.gate import ValidationGate, ValidationResult
from kontainers_proxy.nginx.process import NginxProcess, ProcessResult, ProxyStatus
from kontainers_proxy.nginx.store import ConfigContext, ConfigSnapshot, ConfigStore

__all__ = [
    "CompilerOptions",
    "ConfigContext",
    "ConfigSnapshot",
    "ConfigStore",
    "NginxProcess",
    "ProcessResult",
    "ProxyStatus",
    "ValidationGate",
    "ValidationResult",
    "generate",
]
