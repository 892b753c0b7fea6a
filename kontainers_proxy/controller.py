"""Safe write -> test -> apply lifecycle for proxy rules.

Every mutating sequence runs under one lock, so at most one rule change is in
flight against the shared Nginx configuration at a time.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

import structlog

from kontainers_proxy.errors import (
    ApplyFailedError,
    ConfigTestFailedError,
    ProxyRuleError,
)
from kontainers_proxy.nginx.compilers import CompilerOptions, generate
from kontainers_proxy.nginx.gate import ValidationGate, ValidationResult
from kontainers_proxy.nginx.modsecurity import generate_waf_rules
from kontainers_proxy.nginx.process import INginxProcess, ProxyStatus
from kontainers_proxy.nginx.store import ConfigContext, ConfigSnapshot, ConfigStore
from kontainers_proxy.rules.models import Rule
from kontainers_proxy.rules.validation import validate_rule

logger = structlog.get_logger()


class ControllerState(str, Enum):
    IDLE = "idle"
    WRITING = "writing"
    TESTING = "testing"
    APPLYING = "applying"
    ROLLING_BACK = "rolling_back"


class RollbackPolicy(str, Enum):
    VALIDATION_ONLY = "validation-only"
    ANY_FAILURE = "any-failure"


@dataclass(frozen=True)
class StateTransition:
    source: ControllerState
    target: ControllerState
    rule_id: str


@dataclass
class SyncReport:
    applied: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ReloadController:
    def __init__(
        self,
        store: ConfigStore,
        process: INginxProcess,
        *,
        gate: Optional[ValidationGate] = None,
        options: Optional[CompilerOptions] = None,
        rollback_policy: RollbackPolicy = RollbackPolicy.VALIDATION_ONLY,
        history_size: int = 100,
    ) -> None:
        self._store = store
        self._process = process
        self._gate = gate or ValidationGate(process)
        self._options = options or CompilerOptions(
            templates_dir=store.templates_dir, modsecurity_dir=store.modsecurity_dir
        )
        self._rollback_policy = rollback_policy
        self._lock = threading.Lock()
        self._state = ControllerState.IDLE
        self._history: deque[StateTransition] = deque(maxlen=history_size)

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def history(self) -> tuple[StateTransition, ...]:
        return tuple(self._history)

    @property
    def rollback_policy(self) -> RollbackPolicy:
        return self._rollback_policy

    def apply(self, rule: Rule) -> Rule:
        """Install ``rule`` and reload, or leave the previous configuration live.

        Raises ``RuleValidationError`` before any file is touched,
        ``ConfigTestFailedError`` after restoring the previous file, and
        ``ApplyFailedError`` when the reload itself fails.
        """
        validate_rule(rule)
        if not rule.enabled:
            self.remove(rule.id)
            return rule

        text = generate(rule, self._options)
        waf_text = generate_waf_rules(rule, self._options.modsecurity_dir)
        context = ConfigContext.HTTP
        if rule.protocol.is_stream:
            context = ConfigContext.STREAM

        with self._lock:
            try:
                previous = self._store.snapshot(rule.id)
                self._transition(ControllerState.WRITING, rule.id)
                self._store.write(rule.id, text, context)
                if waf_text is None:
                    self._store.remove_waf(rule.id)
                else:
                    self._store.write_waf(rule.id, waf_text)

                self._transition(ControllerState.TESTING, rule.id)
                result = self._gate.validate()
                if not result.ok:
                    self._roll_back(rule.id, previous)
                    raise ConfigTestFailedError(result.message, rule_id=rule.id)

                self._transition(ControllerState.APPLYING, rule.id)
                reload = self._process.reload()
                if not reload.ok:
                    rolled_back = self._rollback_policy == RollbackPolicy.ANY_FAILURE
                    if rolled_back:
                        self._roll_back(rule.id, previous)
                    logger.error(
                        "Reload failed",
                        rule_id=rule.id,
                        output=reload.output,
                        rolled_back=rolled_back,
                    )
                    raise ApplyFailedError(
                        reload.output, rule_id=rule.id, rolled_back=rolled_back
                    )
            finally:
                self._transition(ControllerState.IDLE, rule.id)

        logger.info("Rule applied", rule_id=rule.id, protocol=rule.protocol.value)
        return rule

    def remove(self, rule_id: str) -> None:
        """Remove the rule's file and reload; an unknown id is a no-op.

        A failed test after removal means another file is broken; the removed
        file stays removed.
        """
        with self._lock:
            if self._store.find(rule_id) is None:
                logger.debug("Rule has no active config", rule_id=rule_id)
                return
            try:
                self._transition(ControllerState.WRITING, rule_id)
                self._store.remove(rule_id)

                self._transition(ControllerState.TESTING, rule_id)
                result = self._gate.validate()
                if not result.ok:
                    raise ConfigTestFailedError(result.message, rule_id=rule_id)

                self._transition(ControllerState.APPLYING, rule_id)
                reload = self._process.reload()
                if not reload.ok:
                    logger.error("Reload failed", rule_id=rule_id, output=reload.output)
                    raise ApplyFailedError(reload.output, rule_id=rule_id)
            finally:
                self._transition(ControllerState.IDLE, rule_id)

        logger.info("Rule removed", rule_id=rule_id)

    def sync(self, rules: Iterable[Rule]) -> SyncReport:
        report = SyncReport()
        for rule in rules:
            try:
                self.apply(rule)
            except ProxyRuleError as exc:
                report.failed[rule.id] = str(exc)
                continue
            if rule.enabled:
                report.applied.append(rule.id)
            else:
                report.removed.append(rule.id)
        logger.info(
            "Sync finished",
            applied=len(report.applied),
            removed=len(report.removed),
            failed=len(report.failed),
        )
        return report

    def test(self) -> ValidationResult:
        return self._gate.validate()

    def status(self) -> ProxyStatus:
        return self._process.status()

    def _roll_back(self, rule_id: str, previous: Optional[ConfigSnapshot]) -> None:
        self._transition(ControllerState.ROLLING_BACK, rule_id)
        self._store.restore(rule_id, previous)
        logger.warning("Rolled back rule config", rule_id=rule_id)

    def _transition(self, target: ControllerState, rule_id: str) -> None:
        if target == self._state:
            return
        self._history.append(StateTransition(self._state, target, rule_id))
        logger.debug(
            "Controller state changed",
            rule_id=rule_id,
            source=self._state.value,
            target=target.value,
        )
        self._state = target
