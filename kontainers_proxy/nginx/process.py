"""The live Nginx process, reached through its command-line interface."""

from __future__ import annotations

import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from kontainers_proxy.constants import DEFAULT_COMMAND_TIMEOUT

logger = structlog.get_logger()

_VERSION_RE = re.compile(r"nginx/(\S+)")


@dataclass(frozen=True)
class ProcessResult:
    ok: bool
    output: str
    returncode: Optional[int] = None
    timed_out: bool = False


@dataclass(frozen=True)
class ProxyStatus:
    reachable: bool
    version: Optional[str] = None
    detail: str = ""


class INginxProcess(ABC):
    @abstractmethod
    def test(self) -> ProcessResult:
        """Check the whole configuration without applying it."""

    @abstractmethod
    def reload(self) -> ProcessResult:
        """Ask the running process to load the configuration on disk."""

    @abstractmethod
    def version(self) -> ProcessResult:
        """Report the binary's version banner; also proves it can be executed."""

    def status(self) -> ProxyStatus:
        result = self.version()
        if not result.ok:
            return ProxyStatus(reachable=False, detail=result.output)
        match = _VERSION_RE.search(result.output)
        return ProxyStatus(
            reachable=True,
            version=match.group(1) if match else None,
            detail=result.output,
        )


class NginxProcess(INginxProcess):
    def __init__(
        self,
        binary: str = "nginx",
        *,
        main_config: Optional[Path] = None,
        command_prefix: Sequence[str] = (),
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.binary = binary
        self.main_config = main_config
        self.command_prefix = tuple(command_prefix)
        self.timeout = timeout
        self._runner = runner

    def command(self, *args: str) -> list[str]:
        return [*self.command_prefix, self.binary, *args]

    def test(self) -> ProcessResult:
        args = ["-t"]
        if self.main_config is not None:
            args.extend(["-c", str(self.main_config)])
        return self._run(*args)

    def reload(self) -> ProcessResult:
        return self._run("-s", "reload")

    def version(self) -> ProcessResult:
        return self._run("-v")

    def _run(self, *args: str) -> ProcessResult:
        command = self.command(*args)
        logger.debug("Running nginx command", command=command, timeout=self.timeout)
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                "Nginx command timed out", command=command, timeout=self.timeout
            )
            return ProcessResult(
                ok=False,
                output=f"timeout after {self.timeout:g}s: {' '.join(command)}",
                timed_out=True,
            )
        except OSError as exc:
            logger.warning(
                "Nginx command failed to start", command=command, error=str(exc)
            )
            return ProcessResult(ok=False, output=str(exc))

        output = "\n".join(
            part.strip() for part in (completed.stdout, completed.stderr) if part
        ).strip()
        result = ProcessResult(
            ok=completed.returncode == 0,
            output=output,
            returncode=completed.returncode,
        )
        logger.debug(
            "Nginx command finished",
            command=command,
            returncode=completed.returncode,
        )
        return result
