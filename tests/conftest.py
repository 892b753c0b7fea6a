import sys
import json
from pathlib import Path
from typing import Any, Callable, Optional

from click.testing import CliRunner
import pytest
import structlog


def _ensure_repo_on_path() -> None:
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


_ensure_repo_on_path()

from kontainers_proxy.controller import ReloadController  # noqa: E402
from kontainers_proxy.nginx.process import INginxProcess, ProcessResult  # noqa: E402
from kontainers_proxy.nginx.store import ConfigStore  # noqa: E402


class FakeNginxProcess(INginxProcess):
    """Records every call; test results are consumed in order, then pass."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.test_results: list[ProcessResult] = []
        self.reload_result = ProcessResult(ok=True, output="", returncode=0)
        self.version_result = ProcessResult(
            ok=True, output="nginx version: nginx/1.25.3", returncode=0
        )
        self.on_test: Optional[Callable[[], None]] = None

    def fail_next_test(self, output: str = "[emerg] unexpected end of file") -> None:
        self.test_results.append(ProcessResult(ok=False, output=output, returncode=1))

    def fail_reload(self, output: str = "[error] invalid PID number") -> None:
        self.reload_result = ProcessResult(ok=False, output=output, returncode=1)

    def test(self) -> ProcessResult:
        self.calls.append("test")
        if self.on_test is not None:
            self.on_test()
        if self.test_results:
            return self.test_results.pop(0)
        return ProcessResult(ok=True, output="syntax is ok", returncode=0)

    def reload(self) -> ProcessResult:
        self.calls.append("reload")
        return self.reload_result

    def version(self) -> ProcessResult:
        self.calls.append("version")
        return self.version_result


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    monkeypatch.setattr(Path, "home", lambda: tmp_path)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def write_json():
    def _write(path: Path, payload: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")

    return _write


@pytest.fixture
def nginx_root(tmp_path: Path) -> Path:
    return tmp_path / "nginx"


@pytest.fixture
def store(nginx_root: Path, tmp_path: Path) -> ConfigStore:
    return ConfigStore(
        nginx_root,
        log_dir=str(tmp_path / "logs"),
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def fake_process() -> FakeNginxProcess:
    return FakeNginxProcess()


@pytest.fixture
def controller(store: ConfigStore, fake_process: FakeNginxProcess) -> ReloadController:
    store.ensure_main_config()
    return ReloadController(store, fake_process)


@pytest.fixture
def http_payload() -> dict[str, Any]:
    return {
        "id": "api",
        "name": "API",
        "sourceHost": "example.com",
        "sourcePath": "/api",
        "targetContainer": "api-service",
        "targetPort": 8080,
        "protocol": "HTTP",
    }


@pytest.fixture
def cli_runner(tmp_path: Path) -> CliRunner:
    class HomeCliRunner(CliRunner):
        def invoke(self, cli: Any, args: Any = None, **kwargs: Any):  # type: ignore[override]
            env = dict(kwargs.pop("env", {}) or {})
            env.setdefault("HOME", str(tmp_path))
            env.setdefault("XDG_CONFIG_HOME", str(tmp_path / ".config"))
            env.setdefault("KONTAINERS_PROXY_CONFIG_DIR", str(tmp_path / "nginx"))
            env.setdefault("KONTAINERS_PROXY_LOG_DIR", str(tmp_path / "logs"))
            env.setdefault("KONTAINERS_PROXY_CACHE_DIR", str(tmp_path / "cache"))
            kwargs["env"] = env
            return super().invoke(cli, args=args, **kwargs)

    return HomeCliRunner()


@pytest.fixture
def cli_process(monkeypatch, fake_process: FakeNginxProcess) -> FakeNginxProcess:
    import kontainers_proxy.__main__ as entry

    monkeypatch.setattr(entry, "NginxProcess", lambda *args, **kwargs: fake_process)
    return fake_process
