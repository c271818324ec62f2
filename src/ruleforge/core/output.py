"""Rich terminal formatting for RuleForge output."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from ruleforge.core.models import (
    DiagnosticReport,
    FixAction,
    FixDecision,
    Match,
    Outcome,
    OutcomeStatus,
    PipelineStage,
    Rule,
    RuleCategory,
    Severity,
)
from ruleforge.pipeline.scoring import compute_health_score
from ruleforge.rules.conflicts import ConflictPair
from ruleforge.rules.distiller import DistillationSummary, DistillStatus
from ruleforge.rules.health import HealthAssessment, RuleHealth

console = Console()
error_console = Console(stderr=True)


SEVERITY_ICONS = {
    Severity.CRITICAL: "[red]●[/red]",
    Severity.WARNING: "[yellow]●[/yellow]",
    Severity.INFO: "[blue]●[/blue]",
}

ACTION_STYLES = {
    FixAction.AUTO_APPLY: "green",
    FixAction.PROPOSE: "yellow",
    FixAction.ALERT_ONLY: "red",
}

OUTCOME_ICONS = {
    OutcomeStatus.APPLIED: "[green]✅[/green]",
    OutcomeStatus.UNCHANGED: "[green]=[/green]",
    OutcomeStatus.FAILED: "[red]❌[/red]",
    OutcomeStatus.LOCK_BUSY: "[yellow]⏸[/yellow]",
    OutcomeStatus.CANCELLED: "[dim]✕[/dim]",
}

HEALTH_COLORS = {
    RuleHealth.HEALTHY: "green",
    RuleHealth.PROBATIONARY: "cyan",
    RuleHealth.DEGRADING: "yellow",
    RuleHealth.NEEDS_REVIEW: "red",
    RuleHealth.POSSIBLY_OBSOLETE: "magenta",
    RuleHealth.DISABLED: "dim",
}

CATEGORY_LABELS = {
    RuleCategory.DECLARATIVE: "Declarative",
    RuleCategory.PREVENTIVE: "Preventive",
    RuleCategory.CURATIVE: "Curative",
}


def score_color(score: int) -> str:
    """Return color name based on score."""
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    return "red"


def progress_bar(score: int, width: int = 10) -> str:
    """Create a text-based progress bar."""
    filled = round(score / 100 * width)
    empty = width - filled
    color = score_color(score)
    return f"[{color}]{'█' * filled}{'░' * empty}[/{color}]"


def confidence_bar(confidence: float, width: int = 12) -> str:
    color = "green" if confidence >= 0.95 else "yellow" if confidence >= 0.80 else "red"
    filled = round(confidence * width)
    return f"[{color}]{'█' * filled}{'░' * (width - filled)}[/{color}] {confidence:.2f}"


# ---------------------------------------------------------------------------
# Diagnostic reports
# ---------------------------------------------------------------------------

def format_match(match: Match) -> str:
    icon = SEVERITY_ICONS.get(match.severity, "●")
    bound = ", ".join(f"{k}={v}" for k, v in sorted(match.bindings.items()))
    return f"  {icon} {match.rule_id}  [dim]{bound}[/dim]"


def format_decision(decision: FixDecision) -> str:
    style = ACTION_STYLES[decision.action]
    icon = SEVERITY_ICONS.get(decision.match.severity, "●")
    return (
        f"  {icon} {decision.match.rule_id}  [{style}]{decision.action.value}[/{style}]\n"
        f"     [dim]{decision.reason}[/dim]"
    )


def format_outcome(outcome: Outcome) -> str:
    icon = OUTCOME_ICONS.get(outcome.status, "●")
    return f"  {icon} {outcome.rule_id}  {outcome.status.value}  [dim]{outcome.reason} ({outcome.duration_ms:.0f}ms)[/dim]"


def print_report(report: DiagnosticReport) -> None:
    """Print the report card for one target."""
    color = score_color(report.health_score)
    lines = [""]

    if report.state == PipelineStage.FAILED:
        lines.append(f"  [red]Diagnosis failed[/red] ({report.error_code}): {report.error}")
        lines.append("")
        console.print(Panel(
            "\n".join(lines),
            title=f"[bold]{report.target_id}[/bold]",
            border_style="red",
            padding=(0, 1),
        ))
        return

    state = "" if report.state == PipelineStage.COMPLETE else f"  [yellow]({report.state.value})[/yellow]"
    lines.append(f"  Health Score:  [{color}]{report.health_score}/100[/{color}]{state}")
    lines.append("")

    _, categories = compute_health_score(report.findings, report.decisions, report.outcomes)
    for category in RuleCategory:
        cs = categories[category.value]
        lines.append(f"  {CATEGORY_LABELS[category]:<14} {progress_bar(cs.score)}  {cs.score}/100")
    lines.append("")

    findings = sorted(report.findings, key=lambda m: list(Severity).index(m.severity))
    if findings:
        lines.append("  [bold]Findings[/bold]")
        lines.extend(format_match(m) for m in findings)
        lines.append("")

    if report.decisions:
        lines.append("  [bold]Repairs[/bold]")
        lines.extend(format_decision(d) for d in report.decisions)
        lines.append("")

    if report.outcomes:
        lines.append("  [bold]Outcomes[/bold]")
        lines.extend(format_outcome(o) for o in report.outcomes)
        lines.append("")

    if not findings and not report.decisions:
        lines.append("  [green]No rule matched.[/green]")
        lines.append("")

    lines.append(
        f"  {report.auto_apply_count} auto-apply | "
        f"{report.propose_count} proposed | "
        f"{report.alert_count} alert-only"
    )

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]{report.target_id}[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_fleet_summary(reports: list[DiagnosticReport]) -> None:
    console.print()
    for report in sorted(reports, key=lambda r: r.health_score):
        if report.state == PipelineStage.FAILED:
            console.print(f"  [red]{report.target_id:<36}[/red] failed: {report.error_code}")
            continue
        bar = progress_bar(report.health_score)
        console.print(f"  {report.target_id:<36} {bar}  {report.health_score}/100")
    console.print()


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def print_rule_list(rules: list[Rule]) -> None:
    if not rules:
        console.print("\n  No rules yet. Run `ruleforge distill` or `ruleforge rules add`.\n")
        return

    console.print()
    current: RuleCategory | None = None
    for rule in rules:
        if rule.category != current:
            current = rule.category
            console.print(f"  [bold]{CATEGORY_LABELS[current]}[/bold]")
        icon = SEVERITY_ICONS.get(rule.severity, "●")
        state = "" if rule.enabled else "  [dim](disabled)[/dim]"
        stats = f"{rule.success_count}/{rule.applied_count}" if rule.applied_count else "-"
        console.print(
            f"  {icon} {rule.id:<30} {confidence_bar(rule.confidence)}  {stats:>7}{state}"
        )
    console.print()


def print_rule_detail(rule: Rule, health: HealthAssessment) -> None:
    lines = [""]
    lines.append(f"  {rule.describe()}")
    if rule.description:
        lines.append(f"  [dim]{rule.description}[/dim]")
    lines.append("")
    lines.append(f"  Category:    {rule.category.value}")
    lines.append(f"  Severity:    {rule.severity.value}")
    lines.append(f"  Provenance:  {rule.provenance.label}")
    if rule.provenance.mapping_version:
        lines.append(f"  Mapping:     {rule.provenance.mapping_version}")
    if rule.action is not None:
        lines.append(f"  Action:      {rule.action.describe()}")
    lines.append(f"  Confidence:  {confidence_bar(rule.confidence)}")
    lines.append(f"  Applied:     {rule.applied_count} ({rule.success_count} succeeded)")
    if rule.last_applied_at is not None:
        lines.append(f"  Last used:   {rule.last_applied_at:%Y-%m-%d %H:%M}")
    color = HEALTH_COLORS[health.health]
    lines.append(f"  Health:      [{color}]{health.health.value}[/{color}]  [dim]{health.detail}[/dim]")

    if rule.revisions:
        lines.append("")
        lines.append("  [bold]Revisions[/bold]")
        for rev in rule.revisions:
            lines.append(
                f"  {rev.number:>3}  {rev.timestamp:%Y-%m-%d %H:%M}  {rev.author:<10} {rev.message}"
            )

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]{rule.id}[/bold]",
        border_style="dim" if not rule.enabled else "cyan",
        padding=(0, 1),
    ))


def print_conflicts(pairs: list[ConflictPair]) -> None:
    if not pairs:
        console.print("\n  [green]No conflicts between enabled rules.[/green]\n")
        return
    console.print()
    for pair in pairs:
        console.print(f"  [red]❌ {pair.first}[/red] conflicts with [red]{pair.second}[/red] on {pair.fact}")
    console.print()


# ---------------------------------------------------------------------------
# Distillation
# ---------------------------------------------------------------------------

def print_distillation_summary(summary: DistillationSummary) -> None:
    if not summary.results:
        console.print("\n  No new patterns.\n")
        return

    console.print()
    for result in summary.results:
        if result.status == DistillStatus.ACCEPTED:
            console.print(f"  [green]+ {result.pattern.id}[/green]  -> {result.rule.id}")
        elif result.status == DistillStatus.MERGED:
            console.print(f"  [cyan]= {result.pattern.id}[/cyan]  merged into {result.rule.id}")
        else:
            console.print(f"  [dim]- {result.pattern.id}  {result.reason}[/dim]")

    console.print()
    console.print(
        f"  {len(summary.accepted)} accepted | "
        f"{len(summary.merged)} merged | "
        f"{len(summary.rejected)} rejected"
    )
    if summary.conflict_violations:
        console.print(f"  [red]{len(summary.conflict_violations)} conflicting rule pairs detected.[/red]")
    console.print()


def get_progress() -> Progress:
    """Create a progress instance for diagnostic passes."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )
