"""ruleforge distill command."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from ruleforge.core.errors import RuleForgeError
from ruleforge.core.output import console, print_distillation_summary
from ruleforge.service import RuleForge


@click.command()
@click.option("--limit", type=int, default=None, help="Distill at most N patterns")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
def distill(limit: int | None, as_json: bool):
    """Run one distillation cycle over the pattern feed.

    Reads new patterns from the configured patterns file and turns the
    confident, mappable, conflict-free ones into rules.
    """
    try:
        forge = RuleForge(Path.cwd())
        summary = forge.distill_cycle(limit=limit)
    except RuleForgeError as e:
        console.print(f"\n  [red]Distillation failed: {e.message}[/red]\n")
        sys.exit(1)

    if as_json:
        output = [
            {
                "pattern": r.pattern.id,
                "status": r.status.value,
                "rule": r.rule.id if r.rule else None,
                "reason": r.reason,
            }
            for r in summary.results
        ]
        click.echo(json.dumps(output, indent=2))
    else:
        print_distillation_summary(summary)

    if summary.conflict_violations:
        sys.exit(2)
