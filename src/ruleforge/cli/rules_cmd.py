"""ruleforge rules commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from ruleforge.core.errors import RuleForgeError
from ruleforge.core.models import RuleCategory
from ruleforge.core.output import (
    console,
    print_conflicts,
    print_rule_detail,
    print_rule_list,
)
from ruleforge.rules.serializer import rule_to_dict
from ruleforge.service import RuleForge


def _fail(message: str) -> None:
    console.print(f"\n  [red]{message}[/red]\n")
    sys.exit(1)


@click.group()
def rules():
    """Inspect and manage the rule store."""
    pass


@rules.command("list")
@click.option(
    "--category",
    type=click.Choice([c.value for c in RuleCategory]),
    default=None,
    help="Only rules of this category",
)
@click.option("--all", "include_disabled", is_flag=True, help="Include disabled rules")
@click.option("--json", "as_json", is_flag=True, help="Print rules as JSON")
def list_rules(category: str | None, include_disabled: bool, as_json: bool):
    """List rules in evaluation order."""
    forge = RuleForge(Path.cwd())
    found = forge.list_rules(
        RuleCategory(category) if category else None,
        include_disabled=include_disabled,
    )
    if as_json:
        click.echo(json.dumps([rule_to_dict(r) for r in found], indent=2, default=str))
    else:
        print_rule_list(found)


@rules.command()
@click.argument("rule_id")
@click.option("--json", "as_json", is_flag=True, help="Print the rule as JSON")
def show(rule_id: str, as_json: bool):
    """Show a rule with its statistics and revision history."""
    forge = RuleForge(Path.cwd())
    try:
        rule = forge.get_rule(rule_id)
    except RuleForgeError as e:
        _fail(e.message)
        return

    if as_json:
        data = rule_to_dict(rule)
        data["health"] = forge.rule_health(rule_id).health.value
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        print_rule_detail(rule, forge.rule_health(rule_id))


@rules.command()
@click.argument("rule_id")
def enable(rule_id: str):
    """Re-enable a disabled rule (fails if it would conflict)."""
    forge = RuleForge(Path.cwd())
    try:
        forge.enable_rule(rule_id)
    except RuleForgeError as e:
        _fail(f"Cannot enable {rule_id}: {e.message} ({e.code})")
        return
    console.print(f"\n  [green]Enabled {rule_id}.[/green]\n")


@rules.command()
@click.argument("rule_id")
@click.option("--reason", default="", help="Why the rule is being disabled")
def disable(rule_id: str, reason: str):
    """Disable a rule. Rules are never deleted."""
    forge = RuleForge(Path.cwd())
    try:
        forge.disable_rule(rule_id, reason=reason)
    except RuleForgeError as e:
        _fail(f"Cannot disable {rule_id}: {e.message}")
        return
    console.print(f"\n  [yellow]Disabled {rule_id}.[/yellow]\n")


@rules.command()
def check():
    """Verify that no two enabled rules conflict."""
    forge = RuleForge(Path.cwd())
    pairs = forge.check_conflicts()
    print_conflicts(pairs)
    if pairs:
        sys.exit(1)


@rules.command()
@click.argument("rules_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--author", default="cli", help="Author recorded in the rule revisions")
def add(rules_file: Path, author: str):
    """Load manually authored rules from a TOML file.

    Each [[rules]] table needs id, category, conditions and conclusion;
    curative rules also need an action.
    """
    forge = RuleForge(Path.cwd())
    try:
        results = forge.load_rules_file(rules_file, author=author)
    except RuleForgeError as e:
        _fail(e.message)
        return

    console.print()
    for result in results:
        if result.loaded:
            console.print(f"  [green]+ {result.rule_id}[/green]")
        else:
            console.print(f"  [red]- {result.rule_id}[/red]  {result.error_code}: {result.error}")
    console.print()

    if any(not r.loaded for r in results):
        sys.exit(1)
