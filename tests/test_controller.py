"""Lifecycle tests for ReloadController."""

import threading
from dataclasses import replace

import pytest

from kontainers_proxy.controller import (
    ControllerState,
    ReloadController,
    RollbackPolicy,
)
from kontainers_proxy.errors import (
    ApplyFailedError,
    ConfigStoreError,
    ConfigTestFailedError,
    RuleValidationError,
)
from kontainers_proxy.nginx.compilers import CompilerOptions, generate
from kontainers_proxy.nginx.store import ConfigContext
from kontainers_proxy.rules.models import (
    AdvancedConfig,
    ProxyProtocol,
    Rule,
    WafConfig,
    WafMode,
    WafRuleset,
)


def _rule(**overrides) -> Rule:
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


def _options(store) -> CompilerOptions:
    return CompilerOptions(templates_dir=store.templates_dir)


def _active_files(store) -> dict[str, bytes]:
    return {p.name: p.read_bytes() for p in sorted(store.active_dir.iterdir())}


def test_apply_writes_tests_and_reloads(controller, store, fake_process) -> None:
    rule = _rule()
    controller.apply(rule)

    assert fake_process.calls == ["test", "reload"]
    assert store.read("api") == generate(rule, _options(store))
    assert controller.state == ControllerState.IDLE


def test_stream_rule_is_written_to_stream_context(controller, store) -> None:
    rule = _rule(id="db", protocol=ProxyProtocol.TCP, target_port=5432)
    controller.apply(rule)
    assert store.find("db") == (store.active_dir / "db.stream", ConfigContext.STREAM)


def test_failed_test_on_new_rule_leaves_active_dir_unchanged(
    controller, store, fake_process
) -> None:
    controller.apply(_rule(id="web", source_path="/"))
    before = _active_files(store)
    fake_process.calls.clear()

    fake_process.fail_next_test('[emerg] host not found in upstream "api-service"')
    with pytest.raises(ConfigTestFailedError) as exc_info:
        controller.apply(_rule())

    assert "host not found" in exc_info.value.diagnostic
    assert exc_info.value.rule_id == "api"
    assert fake_process.calls == ["test"]
    assert _active_files(store) == before
    assert controller.state == ControllerState.IDLE


def test_failed_update_restores_previous_file(controller, store, fake_process) -> None:
    controller.apply(_rule())
    original = (store.active_dir / "api.conf").read_bytes()

    fake_process.fail_next_test()
    with pytest.raises(ConfigTestFailedError):
        controller.apply(_rule(domain="api.example.com"))

    assert (store.active_dir / "api.conf").read_bytes() == original


def test_file_under_test_is_the_candidate(controller, store, fake_process) -> None:
    seen = []
    fake_process.on_test = lambda: seen.append(store.read("api"))
    updated = _rule(domain="api.example.com")
    controller.apply(updated)
    assert seen == [generate(updated, _options(store))]


def test_domain_update_reloads_once(controller, store, fake_process) -> None:
    rule = _rule()
    controller.apply(rule)
    fake_process.calls.clear()

    updated = replace(rule, domain="api.example.com")
    controller.apply(updated)

    assert fake_process.calls.count("reload") == 1
    assert store.read("api") == generate(updated, _options(store))
    assert "server_name api.example.com;" in store.read("api")


def test_invalid_rule_touches_nothing(controller, store, fake_process) -> None:
    with pytest.raises(RuleValidationError):
        controller.apply(_rule(target_port=0))
    assert fake_process.calls == []
    assert store.read("api") is None
    assert controller.history == ()


def test_reload_failure_keeps_file_by_default(controller, store, fake_process) -> None:
    fake_process.fail_reload()
    with pytest.raises(ApplyFailedError) as exc_info:
        controller.apply(_rule())

    assert exc_info.value.rolled_back is False
    assert "invalid PID" in exc_info.value.output
    assert store.read("api") is not None


def test_reload_failure_rolls_back_when_configured(store, fake_process) -> None:
    store.ensure_main_config()
    controller = ReloadController(
        store, fake_process, rollback_policy=RollbackPolicy.ANY_FAILURE
    )
    fake_process.fail_reload()
    with pytest.raises(ApplyFailedError) as exc_info:
        controller.apply(_rule())

    assert exc_info.value.rolled_back is True
    assert store.read("api") is None
    targets = [item.target for item in controller.history]
    assert ControllerState.ROLLING_BACK in targets


def test_history_records_lifecycle(controller) -> None:
    controller.apply(_rule())
    assert [(t.source, t.target) for t in controller.history] == [
        (ControllerState.IDLE, ControllerState.WRITING),
        (ControllerState.WRITING, ControllerState.TESTING),
        (ControllerState.TESTING, ControllerState.APPLYING),
        (ControllerState.APPLYING, ControllerState.IDLE),
    ]
    assert {t.rule_id for t in controller.history} == {"api"}


def test_history_is_bounded(store, fake_process) -> None:
    controller = ReloadController(store, fake_process, history_size=3)
    controller.apply(_rule())
    assert len(controller.history) == 3
    assert controller.history[-1].target == ControllerState.IDLE


def test_remove_unknown_rule_is_a_noop(controller, fake_process) -> None:
    controller.remove("missing")
    assert fake_process.calls == []
    assert controller.history == ()


def test_remove_deletes_and_reloads(controller, store, fake_process) -> None:
    controller.apply(_rule())
    fake_process.calls.clear()

    controller.remove("api")

    assert store.read("api") is None
    assert fake_process.calls == ["test", "reload"]


def test_remove_reports_failing_test(controller, store, fake_process) -> None:
    controller.apply(_rule())
    fake_process.fail_next_test("[emerg] broken neighbour")
    with pytest.raises(ConfigTestFailedError):
        controller.remove("api")
    assert store.read("api") is None
    assert fake_process.calls == ["test", "reload", "test"]


def test_disabled_rule_is_removed(controller, store, fake_process) -> None:
    controller.apply(_rule())
    fake_process.calls.clear()

    controller.apply(_rule(enabled=False))

    assert store.read("api") is None
    assert fake_process.calls == ["test", "reload"]


def test_sync_collects_failures(controller, store, fake_process) -> None:
    controller.apply(_rule(id="old"))
    fake_process.calls.clear()

    report = controller.sync(
        [
            _rule(id="web", source_path="/"),
            _rule(id="bad", target_port=70000),
            _rule(id="old", enabled=False),
        ]
    )

    assert report.applied == ["web"]
    assert report.removed == ["old"]
    assert list(report.failed) == ["bad"]
    assert report.ok is False
    assert store.list_rule_ids() == ["web"]


def test_test_and_status_delegate(controller, fake_process) -> None:
    assert controller.test().ok is True
    status = controller.status()
    assert status.reachable is True
    assert status.version == "1.25.3"
    assert fake_process.calls == ["test", "version"]


def test_failed_update_restores_crlf_file_byte_for_byte(
    controller, store, fake_process
) -> None:
    legacy = b"server {\r\n    listen 80;\r\n}\r\n"
    (store.active_dir / "api.conf").write_bytes(legacy)

    fake_process.fail_next_test()
    with pytest.raises(ConfigTestFailedError):
        controller.apply(_rule())

    assert (store.active_dir / "api.conf").read_bytes() == legacy


def test_failed_update_keeps_non_utf8_file(controller, store, fake_process) -> None:
    legacy = b"# caf\xe9\nserver {\n    listen 80;\n}\n"
    (store.active_dir / "api.conf").write_bytes(legacy)

    fake_process.fail_next_test()
    with pytest.raises(ConfigTestFailedError):
        controller.apply(_rule())

    assert (store.active_dir / "api.conf").read_bytes() == legacy
    with pytest.raises(ConfigStoreError):
        store.read("api")


def test_failed_protocol_switch_restores_http_config(
    controller, store, fake_process
) -> None:
    controller.apply(_rule())
    original = (store.active_dir / "api.conf").read_bytes()

    fake_process.fail_next_test()
    with pytest.raises(ConfigTestFailedError):
        controller.apply(_rule(protocol=ProxyProtocol.TCP, target_port=5432))

    assert (store.active_dir / "api.conf").read_bytes() == original
    assert not (store.active_dir / "api.stream").exists()


def test_concurrent_applies_are_serialized(controller, store, fake_process) -> None:
    first_testing = threading.Event()
    release_first = threading.Event()

    def hold_first_test() -> None:
        if not first_testing.is_set():
            first_testing.set()
            release_first.wait(timeout=5)

    fake_process.on_test = hold_first_test
    first = threading.Thread(target=controller.apply, args=(_rule(id="first"),))
    second = threading.Thread(target=controller.apply, args=(_rule(id="second"),))

    first.start()
    assert first_testing.wait(timeout=5)
    second.start()
    second.join(timeout=0.2)

    assert second.is_alive()
    assert controller.state == ControllerState.TESTING
    assert store.read("second") is None

    release_first.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert not second.is_alive()
    assert store.list_rule_ids() == ["first", "second"]
    assert fake_process.calls == ["test", "reload", "test", "reload"]
    assert [t.rule_id for t in controller.history][:4] == ["first"] * 4


def _waf_rule(**overrides) -> Rule:
    waf = WafConfig(enabled=True, mode=WafMode.BLOCKING, rulesets=(WafRuleset.SQL,))
    return _rule(advanced_config=AdvancedConfig(waf_config=waf), **overrides)


def test_waf_rules_follow_the_rule(controller, store) -> None:
    controller.apply(_waf_rule())
    waf_path = store.waf_path_for("api")
    assert "SecRuleEngine On" in waf_path.read_text(encoding="utf-8")
    assert f"modsecurity_rules_file {waf_path};" in store.read("api")

    controller.apply(_rule())
    assert not waf_path.exists()

    controller.apply(_waf_rule())
    controller.remove("api")
    assert not waf_path.exists()


def test_failed_update_restores_waf_rules(controller, store, fake_process) -> None:
    controller.apply(_waf_rule())
    waf_path = store.waf_path_for("api")
    original = waf_path.read_bytes()

    fake_process.fail_next_test()
    with pytest.raises(ConfigTestFailedError):
        controller.apply(_rule(domain="api.example.com"))

    assert waf_path.read_bytes() == original
