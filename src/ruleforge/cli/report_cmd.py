"""ruleforge report and history commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from ruleforge.core.output import console, print_report, score_color
from ruleforge.pipeline.report import report_to_dict
from ruleforge.service import RuleForge


@click.command()
@click.argument("target_id")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def report(target_id: str, as_json: bool):
    """Show the latest diagnostic report for TARGET_ID."""
    forge = RuleForge(Path.cwd())
    latest = forge.latest_report(target_id)
    if latest is None:
        console.print(f"\n  No report for {target_id} yet. Run `ruleforge run` first.\n")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report_to_dict(latest), indent=2, default=str))
    else:
        print_report(latest)


@click.command()
@click.argument("target_id")
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.option("--days", type=int, default=90, help="Number of days of history")
def history(target_id: str, as_json: bool, days: int):
    """Show the health score history of TARGET_ID.

    Drops of more than five points between passes are flagged.
    """
    forge = RuleForge(Path.cwd())
    entries = forge.history_trend(target_id, days=days)

    if not entries:
        console.print(f"\n  No history for {target_id} yet. Run `ruleforge run` to start tracking.\n")
        return

    if as_json:
        output = [
            {
                "date": e.recorded_at.isoformat(),
                "health_score": e.health_score,
                "state": e.state,
                "findings": e.findings,
                "decisions": e.decisions,
                "outcomes": e.outcomes,
            }
            for e in entries
        ]
        click.echo(json.dumps(output, indent=2))
        return

    console.print(f"\n  [bold]{target_id} health history[/bold]\n")

    for entry in entries[-20:]:  # Show last 20
        bar_len = round(entry.health_score / 100 * 40)
        color = score_color(entry.health_score)
        date_str = entry.recorded_at.strftime("%Y-%m-%d %H:%M")
        console.print(f"  {date_str}  [{color}]{'█' * bar_len}[/{color}] {entry.health_score}")

    if len(entries) >= 2:
        first = entries[0].health_score
        last = entries[-1].health_score
        delta = last - first
        delta_str = f"+{delta}" if delta >= 0 else str(delta)
        console.print(f"\n  Trend: {first} -> {last} ({delta_str})")

    for alert in forge.regression_alerts(target_id, days=days):
        console.print(
            f"  [red]Regression {alert.date:%Y-%m-%d %H:%M}: "
            f"{alert.from_score} -> {alert.to_score} ({alert.delta})[/red]"
        )

    console.print()
