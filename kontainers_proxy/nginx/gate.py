from __future__ import annotations

from dataclasses import dataclass

import structlog

from kontainers_proxy.nginx.process import INginxProcess

logger = structlog.get_logger()


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    message: str


class ValidationGate:
    """Run the configuration test over everything currently on disk.

    The check is global: a broken file left by another rule fails it too.
    """

    def __init__(self, process: INginxProcess) -> None:
        self._process = process

    def validate(self) -> ValidationResult:
        result = self._process.test()
        if result.ok:
            logger.debug("Configuration test passed")
            return ValidationResult(ok=True, message=result.output)
        logger.info("Configuration test failed", diagnostic=result.output)
        return ValidationResult(ok=False, message=result.output or "test failed")
