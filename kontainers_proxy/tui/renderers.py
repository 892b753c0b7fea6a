from typing import Iterable

from rich.console import Console
from rich.markup import escape

from kontainers_proxy.controller import StateTransition, SyncReport
from kontainers_proxy.nginx.gate import ValidationResult
from kontainers_proxy.nginx.process import ProxyStatus
from kontainers_proxy.rules.models import Rule
from kontainers_proxy.tui.enums import UIStyle
from kontainers_proxy.tui.sections import UISection
from kontainers_proxy.tui.tables import RulesTable, StatusTable, SyncTable
from kontainers_proxy.utils import compact_home_path


class ProxyConsoleUI:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_rules(self, rules: list[Rule], active_ids: set[str]) -> None:
        if not rules:
            self.console.print(
                UISection.note(
                    "rules", "No proxy rules stored.", style=UIStyle.YELLOW.value
                )
            )
            return
        self.console.print(
            UISection.wrap(
                "proxy rules",
                RulesTable.overview_table(rules, active_ids),
                style=UIStyle.BLUE.value,
            )
        )

    def render_init(self, created: bool, main_config: str, active_dir: str) -> None:
        verb = "Created" if created else "Kept existing"
        self.console.print(
            UISection.note(
                "init",
                f"{verb} main config: [bold]{compact_home_path(main_config)}[/bold]\n"
                f"Rule configs: {compact_home_path(active_dir)}",
                style=UIStyle.GREEN.value if created else UIStyle.DIM.value,
            )
        )

    def render_applied(
        self,
        rule: Rule,
        transitions: Iterable[StateTransition] = (),
        verbose: bool = False,
    ) -> None:
        message = f"Rule applied: [bold]{rule.id}[/bold]"
        if not rule.enabled:
            message = f"Rule disabled: [bold]{rule.id}[/bold]"
        self.console.print(UISection.note("apply", message, style=UIStyle.GREEN.value))
        if verbose:
            self.render_transitions(transitions)

    def render_removed(self, rule_id: str, had_definition: bool) -> None:
        detail = "" if had_definition else "\nNo stored definition was found."
        self.console.print(
            UISection.note(
                "remove",
                f"Rule removed: [bold]{rule_id}[/bold]{detail}",
                style=UIStyle.YELLOW.value,
            )
        )

    def render_transitions(self, transitions: Iterable[StateTransition]) -> None:
        items = list(transitions)
        if not items:
            return
        self.console.print(
            UISection.wrap(
                "transitions",
                StatusTable.transitions_table(items),
                style=UIStyle.DIM.value,
            )
        )

    def render_test(self, result: ValidationResult) -> None:
        if result.ok and not result.message:
            self.console.print(
                UISection.note(
                    "test", "Configuration test passed.", style=UIStyle.GREEN.value
                )
            )
            return
        title = "test" if result.ok else "test failed"
        self.console.print(UISection.diagnostic(title, result.message, ok=result.ok))

    def render_status(
        self, status: ProxyStatus, main_config: str, active_dir: str
    ) -> None:
        self.console.print(
            UISection.wrap(
                "nginx",
                StatusTable.status_block(
                    status,
                    compact_home_path(main_config),
                    compact_home_path(active_dir),
                ),
                style=UIStyle.GREEN.value if status.reachable else UIStyle.RED.value,
            )
        )
        if not status.reachable and status.detail:
            self.console.print(UISection.diagnostic("detail", status.detail))

    def render_sync(self, report: SyncReport) -> None:
        self.console.print(SyncTable.stats_panel(report))
        if report.failed:
            failure_text = "\n".join(
                [
                    f"- {rule_id}: {escape(reason)}"
                    for rule_id, reason in report.failed.items()
                ]
            )
            self.console.print(
                UISection.note("failures", failure_text, style=UIStyle.RED.value)
            )

    def render_error(self, title: str, detail: str) -> None:
        self.console.print(UISection.diagnostic(title, detail))
