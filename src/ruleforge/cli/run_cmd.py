"""ruleforge run command."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from ruleforge.core.errors import InfrastructureError, RuleForgeError
from ruleforge.core.models import TargetRef
from ruleforge.core.output import console, get_progress, print_fleet_summary, print_report
from ruleforge.pipeline.report import report_to_dict, reports_to_html
from ruleforge.service import RuleForge


@click.command()
@click.option("--target", "target_ids", multiple=True, help="Only diagnose these targets (forge:owner/name)")
@click.option("--export", "export_fmt", type=click.Choice(["html", "json"]), help="Export report format")
@click.option("--fail-under", type=int, default=0, help="Fail if any target scores below threshold (for CI)")
@click.option("--details/--summary", default=True, help="Print each target's report card")
def run(target_ids: tuple[str, ...], export_fmt: str | None, fail_under: int, details: bool):
    """Run a diagnostic pass over the fleet.

    Every target is observed, matched against the rules, and repaired
    where a curative rule is confident enough to auto-apply.
    """
    try:
        forge = RuleForge(Path.cwd())
        targets = [TargetRef.parse(t) for t in target_ids] if target_ids else forge.targets()
    except (RuleForgeError, ValueError) as e:
        console.print(f"\n  [red]{getattr(e, 'message', e)}[/red]\n")
        sys.exit(1)

    if not targets:
        console.print("\n  No targets in the fleet manifest.\n")
        return

    try:
        with get_progress() as progress:
            task = progress.add_task(f"Diagnosing {len(targets)} targets...", total=None)
            reports = forge.trigger_pass(targets)
            progress.update(task, completed=True)
    except InfrastructureError as e:
        console.print(f"\n  [red]Pass aborted ({e.code}): {e.message}[/red]\n")
        sys.exit(3)
    finally:
        forge.close()

    if details:
        for report in reports:
            print_report(report)
    print_fleet_summary(reports)

    if export_fmt and forge.state_dir is not None:
        export_path = forge.state_dir / "reports"
        export_path.mkdir(exist_ok=True)
        if export_fmt == "json":
            out_file = export_path / "fleet-report.json"
            out_file.write_text(json.dumps([report_to_dict(r) for r in reports], indent=2, default=str))
            console.print(f"  [dim]JSON report saved to {out_file}[/dim]\n")
        else:
            out_file = export_path / "fleet-report.html"
            out_file.write_text(reports_to_html(reports))
            console.print(f"  [dim]HTML report saved to {out_file}[/dim]\n")

    # CI fail-under check
    if fail_under:
        below = [r for r in reports if r.health_score < fail_under]
        if below:
            names = ", ".join(r.target_id for r in below)
            console.print(f"  [red]{len(below)} targets below threshold {fail_under}: {names}[/red]\n")
            sys.exit(1)
