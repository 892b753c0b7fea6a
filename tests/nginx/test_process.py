"""Tests for NginxProcess and ValidationGate."""

import subprocess
from pathlib import Path

from kontainers_proxy.nginx.gate import ValidationGate
from kontainers_proxy.nginx.process import NginxProcess, ProcessResult


class RecordingRunner:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.commands: list[list[str]] = []
        self.kwargs: list[dict] = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        self.kwargs.append(kwargs)
        return subprocess.CompletedProcess(
            command, self.returncode, stdout=self.stdout, stderr=self.stderr
        )


def test_test_command_uses_main_config() -> None:
    runner = RecordingRunner(stderr="nginx: configuration file test is successful\n")
    process = NginxProcess(main_config=Path("/etc/nginx/nginx.conf"), runner=runner)

    result = process.test()

    assert result.ok is True
    assert result.output == "nginx: configuration file test is successful"
    assert runner.commands == [["nginx", "-t", "-c", "/etc/nginx/nginx.conf"]]
    assert runner.kwargs[0]["timeout"] == 30.0
    assert runner.kwargs[0]["capture_output"] is True


def test_command_prefix_targets_container() -> None:
    runner = RecordingRunner()
    process = NginxProcess(
        command_prefix=("docker", "exec", "proxy"), timeout=5, runner=runner
    )
    process.reload()
    assert runner.commands == [["docker", "exec", "proxy", "nginx", "-s", "reload"]]
    assert runner.kwargs[0]["timeout"] == 5


def test_failed_command_keeps_diagnostic() -> None:
    runner = RecordingRunner(
        returncode=1,
        stderr='nginx: [emerg] unknown directive "sever" in /etc/nginx/conf.d/a.conf:3',
    )
    result = NginxProcess(runner=runner).test()
    assert result.ok is False
    assert result.returncode == 1
    assert 'unknown directive "sever"' in result.output


def test_timeout_is_reported_as_failure() -> None:
    def runner(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    result = NginxProcess(timeout=2, runner=runner).reload()
    assert result.ok is False
    assert result.timed_out is True
    assert result.output.startswith("timeout after 2s")


def test_missing_binary_is_reported_as_failure() -> None:
    def runner(command, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", command[0])

    result = NginxProcess("/opt/missing/nginx", runner=runner).test()
    assert result.ok is False
    assert "No such file or directory" in result.output


def test_status_parses_version() -> None:
    runner = RecordingRunner(stderr="nginx version: nginx/1.25.3\n")
    status = NginxProcess(runner=runner).status()
    assert status.reachable is True
    assert status.version == "1.25.3"
    assert runner.commands == [["nginx", "-v"]]


def test_status_unreachable() -> None:
    runner = RecordingRunner(returncode=127, stderr="exec failed")
    status = NginxProcess(runner=runner).status()
    assert status.reachable is False
    assert status.version is None
    assert status.detail == "exec failed"


def test_gate_passes_through_result(fake_process) -> None:
    gate = ValidationGate(fake_process)
    assert gate.validate().ok is True

    fake_process.fail_next_test("[emerg] bad config")
    result = gate.validate()
    assert result.ok is False
    assert result.message == "[emerg] bad config"
    assert fake_process.calls == ["test", "test"]


def test_gate_failure_without_output_has_message(fake_process) -> None:
    fake_process.test_results.append(ProcessResult(ok=False, output=""))
    assert ValidationGate(fake_process).validate().message == "test failed"
