from typing import Iterable

from rich.panel import Panel
from rich.table import Column, Table

from kontainers_proxy.controller import StateTransition, SyncReport
from kontainers_proxy.nginx.process import ProxyStatus
from kontainers_proxy.rules.models import Rule
from kontainers_proxy.tui.enums import PROTOCOL_STYLE, STATE_STYLE, UIStyle


def _target_label(rule: Rule) -> str:
    if rule.load_balancing_targets:
        targets = [
            f"{item.container}:{item.port}" for item in rule.load_balancing_targets
        ]
        return f"{rule.load_balancing_method.value.lower()} -> {', '.join(targets)}"
    return f"{rule.target_container}:{rule.target_port}"


def _source_label(rule: Rule) -> str:
    if rule.protocol.is_stream:
        return f"{rule.source_host}:{rule.listen_port}"
    return f"{rule.server_name}{rule.location_path}"


class RulesTable:
    @staticmethod
    def overview_table(rules: Iterable[Rule], active_ids: set[str]) -> Table:
        table = Table(
            Column(header="Id", width=20, overflow="ellipsis"),
            Column(header="Protocol", width=8),
            Column(header="Source", overflow="ellipsis", max_width=40),
            Column(header="Target", overflow="ellipsis"),
            Column(header="State", width=10),
            expand=True,
            header_style="bold",
        )
        for rule in rules:
            style = PROTOCOL_STYLE.get(rule.protocol, UIStyle.WHITE.value)
            protocol = f"[{style}]{rule.protocol.value}[/{style}]"
            if not rule.enabled:
                state = f"[{UIStyle.DIM.value}]disabled[/{UIStyle.DIM.value}]"
            elif rule.id in active_ids:
                state = f"[{UIStyle.GREEN.value}]active[/{UIStyle.GREEN.value}]"
            else:
                state = f"[{UIStyle.YELLOW.value}]pending[/{UIStyle.YELLOW.value}]"
            table.add_row(
                rule.id, protocol, _source_label(rule), _target_label(rule), state
            )
        return table


class SyncTable:
    @staticmethod
    def stats_panel(report: SyncReport) -> Panel:
        stats: dict[str, str] = {
            "applied": str(len(report.applied)),
            "removed": str(len(report.removed)),
            "failed": str(len(report.failed)),
        }
        table = Table(show_header=False, box=None)
        for key, value in stats.items():
            table.add_row(f"[bold]{key}[/bold]", value)
        return Panel(
            table,
            title="sync",
            border_style=UIStyle.GREEN.value if report.ok else UIStyle.RED.value,
        )


class StatusTable:
    @staticmethod
    def status_block(status: ProxyStatus, main_config: str, active_dir: str) -> Table:
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        if status.reachable:
            reachable = f"[{UIStyle.GREEN.value}]yes[/{UIStyle.GREEN.value}]"
        else:
            reachable = f"[{UIStyle.RED.value}]no[/{UIStyle.RED.value}]"
        table.add_row("Reachable", reachable)
        table.add_row("Version", status.version or "unknown")
        table.add_row("Main config", main_config)
        table.add_row("Active dir", active_dir)
        return table

    @staticmethod
    def transitions_table(transitions: Iterable[StateTransition]) -> Table:
        table = Table(
            Column(header="Rule", overflow="ellipsis"),
            Column(header="From", width=14),
            Column(header="To", width=14),
            expand=True,
            header_style="bold",
        )
        for item in transitions:
            style = STATE_STYLE.get(item.target, UIStyle.WHITE.value)
            table.add_row(
                item.rule_id,
                item.source.value,
                f"[{style}]{item.target.value}[/{style}]",
            )
        return table
