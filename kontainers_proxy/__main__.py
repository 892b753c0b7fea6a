from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console

from kontainers_proxy.controller import ReloadController
from kontainers_proxy.errors import (
    ApplyFailedError,
    ConfigTestFailedError,
    ProxyRuleError,
)
from kontainers_proxy.log import configure_logging
from kontainers_proxy.nginx.compilers import generate
from kontainers_proxy.nginx.process import NginxProcess
from kontainers_proxy.nginx.store import ConfigStore
from kontainers_proxy.rules.models import Rule
from kontainers_proxy.rules.parser import parse_rule_file
from kontainers_proxy.rules.repository import RulesRepository
from kontainers_proxy.rules.validation import validate_rule
from kontainers_proxy.settings import Settings, load_settings
from kontainers_proxy.tui import ProxyConsoleUI
from kontainers_proxy.utils import now_millis


def _settings_from_obj(obj: Dict[str, Any]) -> Settings:
    return obj["settings"]


def _store_from_settings(settings: Settings) -> ConfigStore:
    return ConfigStore(
        settings.config_dir,
        active_dir=settings.resolved_active_dir,
        templates_dir=settings.resolved_templates_dir,
        main_config=settings.resolved_main_config,
        modsecurity_dir=settings.resolved_modsecurity_dir,
        log_dir=settings.log_dir,
        cache_dir=settings.cache_dir,
    )


def _components_from_obj(
    obj: Dict[str, Any],
) -> tuple[ConfigStore, RulesRepository, ReloadController]:
    settings = _settings_from_obj(obj)
    store = _store_from_settings(settings)
    process = NginxProcess(
        settings.nginx_binary,
        main_config=settings.resolved_main_config,
        command_prefix=settings.command_prefix,
        timeout=settings.command_timeout,
    )
    controller = ReloadController(
        store,
        process,
        options=settings.compiler_options(),
        rollback_policy=settings.rollback_policy,
    )
    return store, RulesRepository(settings.resolved_state_dir), controller


def _load_rule(path: Path) -> Rule:
    try:
        return validate_rule(parse_rule_file(path))
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))


def _stamp_created(rule: Rule, existing: Optional[Rule]) -> Rule:
    if existing is not None and existing.created:
        return replace(rule, created=existing.created)
    if not rule.created:
        return replace(rule, created=now_millis())
    return rule


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (JSON or YAML).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log every step to stderr.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Compile proxy rules into Nginx config and apply them safely."""
    try:
        settings = load_settings(config_path)
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    configure_logging("debug" if verbose else settings.log_level)
    ctx.obj = {"settings": settings, "verbose": verbose}


@cli.command(help="Create the main Nginx config and shared templates.")
@click.pass_obj
def init(obj: Dict[str, Any]) -> None:
    ui = ProxyConsoleUI(Console())
    store = _store_from_settings(_settings_from_obj(obj))
    try:
        created = store.ensure_main_config()
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    ui.render_init(created, str(store.main_config), str(store.active_dir))


@cli.command(help="Print the Nginx config generated for a rule file.")
@click.argument(
    "rule_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.pass_obj
def render(obj: Dict[str, Any], rule_file: Path) -> None:
    rule = _load_rule(rule_file)
    try:
        text = generate(rule, _settings_from_obj(obj).compiler_options())
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    click.echo(text, nl=False)


@cli.command(help="Store a rule and apply it if Nginx accepts the result.")
@click.argument(
    "rule_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.pass_obj
def apply(obj: Dict[str, Any], rule_file: Path) -> None:
    ui = ProxyConsoleUI(Console())
    store, repository, controller = _components_from_obj(obj)
    rule = _load_rule(rule_file)
    try:
        rule = _stamp_created(rule, repository.get_rule(rule.id))
        store.ensure_main_config()
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))

    try:
        controller.apply(rule)
    except ConfigTestFailedError as exc:
        ui.render_error("test failed", exc.diagnostic)
        raise click.exceptions.Exit(1)
    except ApplyFailedError as exc:
        if not exc.rolled_back:
            repository.save_rule(rule)
        ui.render_error("reload failed", exc.output)
        raise click.exceptions.Exit(1)
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))

    repository.save_rule(rule)
    ui.render_applied(rule, controller.history, verbose=obj["verbose"])


@cli.command(help="Remove a rule and reload Nginx.")
@click.argument("rule_id")
@click.pass_obj
def remove(obj: Dict[str, Any], rule_id: str) -> None:
    ui = ProxyConsoleUI(Console())
    _, repository, controller = _components_from_obj(obj)
    try:
        controller.remove(rule_id)
    except (ConfigTestFailedError, ApplyFailedError) as exc:
        repository.remove_rule(rule_id)
        ui.render_error("remove failed", str(exc))
        raise click.exceptions.Exit(1)
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    had_definition = repository.remove_rule(rule_id)
    ui.render_removed(rule_id, had_definition)


@cli.command("list", help="List stored rules and whether they are active.")
@click.pass_obj
def list_rules(obj: Dict[str, Any]) -> None:
    ui = ProxyConsoleUI(Console())
    store, repository, _ = _components_from_obj(obj)
    try:
        rules = repository.list_rules()
        active_ids = set(store.list_rule_ids())
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    ui.render_rules(rules, active_ids)


@cli.command(help="Run the Nginx configuration test.")
@click.pass_obj
def test(obj: Dict[str, Any]) -> None:
    ui = ProxyConsoleUI(Console())
    _, _, controller = _components_from_obj(obj)
    result = controller.test()
    ui.render_test(result)
    if not result.ok:
        raise click.exceptions.Exit(1)


@cli.command(help="Show whether Nginx is reachable and its version.")
@click.pass_obj
def status(obj: Dict[str, Any]) -> None:
    ui = ProxyConsoleUI(Console())
    store, _, controller = _components_from_obj(obj)
    ui.render_status(
        controller.status(), str(store.main_config), str(store.active_dir)
    )


@cli.command(help="Re-apply every stored rule definition.")
@click.pass_obj
def sync(obj: Dict[str, Any]) -> None:
    ui = ProxyConsoleUI(Console())
    store, repository, controller = _components_from_obj(obj)
    try:
        store.ensure_main_config()
        rules = repository.list_rules()
    except ProxyRuleError as exc:
        raise click.ClickException(str(exc))
    report = controller.sync(rules)
    ui.render_sync(report)
    if obj["verbose"]:
        ui.render_transitions(controller.history)
    if not report.ok:
        raise click.exceptions.Exit(1)


def main() -> int:
    try:
        cli(standalone_mode=False)
    except click.exceptions.Exit as exc:
        code = exc.exit_code
        return code if isinstance(code, int) else 1
    except click.ClickException as exc:
        exc.show()
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
