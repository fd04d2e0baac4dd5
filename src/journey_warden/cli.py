"""CLI entry point for Journey Warden."""

import asyncio
import difflib
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import Config, load_config
from .heal.fixes import FixContext
from .heal.fixes.data import apply_data_fix
from .heal.logger import (
    LOG_SUFFIX,
    aggregate_healing_logs,
    format_healing_log,
    heal_log_path,
    load_healing_log,
)
from .heal.loop import preview_healing_fixes, run_healing_loop
from .heal.rules import evaluate_healing, get_healing_recommendation
from .logging_config import setup_logging
from .models import AriaInfo, FailureClassification, HealingStatus, VerifySummary
from .tracing import TracingClient
from .verify.classifier import classify, classify_test_results, generate_classification_report
from .verify.parser import extract_test_results, parse_report
from .verify.runner import PlaywrightRunner, RunnerOptions
from .verify.stability import check_stability
from .verify.summary import build_verify_summary, format_verify_summary, make_verify_fn, save_summary

console = Console()

STATUS_STYLES = {
    "passed": "green",
    "healed": "green",
    "flaky": "yellow",
    "exhausted": "yellow",
    "not_healable": "magenta",
    "failed": "red",
    "error": "red",
}


@click.group()
@click.version_option(package_name="journey-warden")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Journey Warden - verify, classify and heal Playwright journey tests."""
    ctx.ensure_object(dict)

    config = load_config(Path(config_path) if config_path else None)
    setup_logging("DEBUG" if verbose else config.log_level)
    ctx.obj["config"] = config

    tracing = TracingClient(config.langfuse)
    ctx.obj["tracing"] = tracing

    if tracing.enabled:
        console.print("[dim]Langfuse tracing enabled[/]")


def _runner_options(config: Config, **overrides) -> RunnerOptions:
    options = RunnerOptions(**{k: v for k, v in overrides.items() if v is not None})
    if options.output_dir is None and config.runner.output_dir:
        options.output_dir = str(config.runner.output_dir)
    return options


@main.command()
@click.option("--test-file", "-t", type=click.Path(), help="Playwright spec file to run")
@click.option("--journey", "-j", "journey_id", help="Journey id; runs tests tagged @<id>")
@click.option("--grep", "-g", help="Only run tests matching this pattern")
@click.option("--project", "-p", help="Playwright project (browser) to run")
@click.option("--retries", type=int, help="Retry failing tests this many times")
@click.option("--repeat-each", type=int, help="Run each test N times")
@click.option("--fail-on-flaky", is_flag=True, help="Treat flaky tests as failures")
@click.option("--timeout", type=int, help="Per-test timeout in ms")
@click.option("--output-dir", "-o", type=click.Path(), help="Directory for the JSON report")
@click.option("--max-flaky-rate", type=float, default=0.0, show_default=True, help="Flaky share tolerated when repeating")
@click.option("--save", "save_path", type=click.Path(), help="Also write the summary JSON to this path")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["table", "json", "markdown"]), default="table"
)
@click.pass_context
def verify(
    ctx: click.Context,
    test_file: str | None,
    journey_id: str | None,
    grep: str | None,
    project: str | None,
    retries: int | None,
    repeat_each: int | None,
    fail_on_flaky: bool,
    timeout: int | None,
    output_dir: str | None,
    max_flaky_rate: float,
    save_path: str | None,
    output_format: str,
) -> None:
    """Run tests and classify any failures.

    With --repeat-each above 1 the run doubles as a stability check: every
    test runs N times and tests whose outcomes disagree are reported as flaky.
    """
    config: Config = ctx.obj["config"]
    runner = PlaywrightRunner(config.runner)

    if grep is None and journey_id and not test_file:
        grep = f"@{journey_id}"

    options = _runner_options(
        config,
        test_file=test_file,
        grep=grep,
        project=project,
        retries=retries,
        repeat_each=repeat_each,
        fail_on_flaky=fail_on_flaky,
        timeout=timeout,
        output_dir=output_dir,
    )

    if output_format == "table":
        console.print(f"\n[bold blue]🔍 Verifying:[/] {test_file or grep or 'all tests'}\n")

    stability = None
    with console.status("[yellow]Running Playwright...[/]"):
        if repeat_each and repeat_each > 1 and (not test_file or Path(test_file).exists()):
            stability = check_stability(
                runner, options, repeat_count=repeat_each, max_flaky_rate=max_flaky_rate
            )
            result = stability.runner_result
        elif test_file:
            result = runner.run_test_file(Path(test_file), options)
        else:
            result = runner.run(options)

    summary = build_verify_summary(
        result,
        journey_id=journey_id,
        stability=stability.to_info() if stability else None,
    )

    if save_path:
        save_summary(summary, save_path)

    if output_format == "json":
        click.echo(json.dumps(summary.to_dict(), indent=2))
    elif output_format == "markdown":
        click.echo(format_verify_summary(summary))
    else:
        _print_summary(summary, result.stderr)
        if save_path:
            console.print(f"[dim]Summary saved to {save_path}[/]\n")

    ctx.exit(0 if summary.passed else 1)


def _print_summary(summary: VerifySummary, stderr: str) -> None:
    style = STATUS_STYLES.get(summary.status.value, "white")
    counts = summary.counts

    console.print(
        f"[bold {style}]{summary.status.value.upper()}[/]  "
        f"total {counts.total} · passed {counts.passed} · failed {counts.failed} · "
        f"skipped {counts.skipped} · flaky {counts.flaky}  [dim]({summary.duration}ms)[/]\n"
    )

    if summary.stability and not summary.stability.stable:
        console.print(
            f"[yellow]⚠️  Unstable: {summary.stability.flaky_rate:.0%} of tests flaky "
            f"({escape(', '.join(summary.stability.flaky_tests)) or 'see runner output'})[/]\n"
        )

    if summary.failures.tests:
        table = Table(title="Failure Classification")
        table.add_column("Test", style="cyan", max_width=50)
        table.add_column("Category", style="yellow")
        table.add_column("Confidence", justify="right")
        table.add_column("Suggestion", style="magenta", max_width=50)

        for key in summary.failures.tests:
            c = summary.failures.classifications.get(key)
            if c is None:
                continue
            table.add_row(key, c.category.value, f"{c.confidence:.0%}", get_healing_recommendation(c))

        console.print(table)
    elif not summary.report_path and stderr:
        console.print(Panel(escape(stderr.strip()[:2000]), title="stderr", border_style="red"))

    if summary.report_path:
        console.print(f"\n[dim]Report: {summary.report_path}[/]\n")


@main.command()
@click.option("--test-file", "-t", required=True, type=click.Path(), help="Playwright spec file to heal")
@click.option("--journey", "-j", "journey_id", required=True, help="Journey id the test belongs to")
@click.option("--output-dir", "-o", type=click.Path(), help="Directory for heal logs")
@click.option("--max-attempts", type=int, help="Override the attempt budget")
@click.option("--project", "-p", help="Playwright project (browser) to run")
@click.option("--aria-role", help="Accessible role of the element the broken selector targets")
@click.option("--aria-name", help="Accessible name of that element")
@click.option("--aria-label", help="Label of that element")
@click.option("--test-id", "aria_test_id", help="data-testid of that element")
@click.pass_context
def heal(
    ctx: click.Context,
    test_file: str,
    journey_id: str,
    output_dir: str | None,
    max_attempts: int | None,
    project: str | None,
    aria_role: str | None,
    aria_name: str | None,
    aria_label: str | None,
    aria_test_id: str | None,
) -> None:
    """Heal a failing journey test with bounded, rule-based fixes."""
    config: Config = ctx.obj["config"]
    tracing: TracingClient = ctx.obj["tracing"]

    healing_config = config.healing
    if max_attempts is not None:
        healing_config = healing_config.model_copy(update={"max_attempts": max_attempts})

    aria_info = None
    if any((aria_role, aria_name, aria_label, aria_test_id)):
        aria_info = AriaInfo(role=aria_role, name=aria_name, label=aria_label, test_id=aria_test_id)

    runner = PlaywrightRunner(config.runner)
    verify_fn = make_verify_fn(
        runner,
        _runner_options(config, test_file=test_file, project=project),
        journey_id=journey_id,
    )

    console.print(f"\n[bold blue]🔧 Healing journey:[/] {journey_id}")
    console.print(f"[dim]File: {test_file} | Max attempts: {healing_config.max_attempts}[/]\n")

    try:
        with console.status("[yellow]Healing...[/]"):
            result = asyncio.run(run_healing_loop(
                journey_id=journey_id,
                test_file=test_file,
                output_dir=Path(output_dir) if output_dir else config.output_dir,
                verify_fn=verify_fn,
                config=healing_config,
                aria_info=aria_info,
                tracing=tracing,
            ))
    except RuntimeError as e:
        raise click.ClickException(str(e)) from e
    finally:
        runner.cleanup()
        tracing.flush()

    style = STATUS_STYLES.get(result.status.value, "white")
    lines = [
        f"Status: [bold {style}]{result.status.value.upper()}[/]",
        f"Attempts: {result.attempts}",
    ]
    if result.applied_fix:
        lines.append(f"Applied fix: [green]{result.applied_fix.value}[/]")
    if result.recommendation:
        lines.append(f"Recommendation: {escape(result.recommendation)}")
    lines.append(f"[dim]Log: {result.log_path}[/]")

    console.print(Panel("\n".join(lines), title="Healing Result", border_style=style))
    ctx.exit(0 if result.status == HealingStatus.HEALED else 1)


@main.command(name="classify")
@click.option("--report", "-r", type=click.Path(exists=True), help="Playwright JSON report")
@click.option("--error", "-e", "error_text", help="Raw error text to classify")
@click.option("--markdown", is_flag=True, help="Print a markdown report")
def classify_cmd(report: str | None, error_text: str | None, markdown: bool) -> None:
    """Classify failures from a JSON report or raw error text."""
    if error_text is None and report is None:
        if sys.stdin.isatty():
            raise click.UsageError("Provide --report, --error or pipe error text on stdin")
        error_text = sys.stdin.read()

    if error_text is not None:
        classifications = {"error": classify(error_text)}
    else:
        parsed = parse_report(report)
        if parsed is None:
            raise click.ClickException(f"Could not parse report: {report}")
        classifications = classify_test_results(
            [r for r in extract_test_results(parsed) if r.final]
        )

    if markdown:
        click.echo(generate_classification_report(classifications))
        return

    if not classifications:
        console.print("[bold green]✓ No failures to classify[/]\n")
        return

    table = Table(title="Failure Classification")
    table.add_column("Test", style="cyan", max_width=50)
    table.add_column("Category", style="yellow")
    table.add_column("Confidence", justify="right")
    table.add_column("Healable")
    table.add_column("Matched", style="dim", max_width=40)

    for key, c in classifications.items():
        evaluation = evaluate_healing(c)
        table.add_row(
            key,
            c.category.value,
            f"{c.confidence:.0%}",
            "[green]yes[/]" if evaluation.can_heal else "[red]no[/]",
            escape(", ".join(c.matched_keywords)),
        )
    console.print(table)


@main.command()
@click.option("--test-file", "-t", required=True, type=click.Path(exists=True), help="Playwright spec file")
@click.option("--error", "-e", "error_text", required=True, help="Error text of the failure")
@click.option("--line", "-l", "line_number", type=int, default=1, help="Line the failure points at")
@click.pass_context
def preview(ctx: click.Context, test_file: str, error_text: str, line_number: int) -> None:
    """Show what each candidate fix would change, without writing files."""
    config: Config = ctx.obj["config"]
    code = Path(test_file).read_text(encoding="utf-8")
    classification: FailureClassification = classify(error_text)

    console.print(
        f"\n[bold]Category:[/] {classification.category.value} "
        f"[dim]({classification.confidence:.0%})[/]\n"
    )

    evaluation = evaluate_healing(classification, config.healing)
    if not evaluation.can_heal:
        console.print(f"[yellow]{evaluation.reason}[/]\n")
        return

    previews = preview_healing_fixes(
        code,
        classification,
        config.healing,
        FixContext(
            line_number=line_number,
            error_message=error_text,
            classification=classification,
            max_timeout_increase=config.healing.max_timeout_increase,
        ),
    )

    for p in previews:
        if not p.result.applied:
            console.print(f"[dim]• {p.fix_type.value}: {p.result.description}[/]")
            continue

        console.print(
            f"[cyan]• {p.fix_type.value}[/]: {p.result.description} "
            f"[dim](confidence {p.result.confidence:.0%})[/]"
        )
        _print_diff(code, p.result.code, test_file, p.fix_type.value)


@main.command()
@click.option("--test-file", "-t", required=True, type=click.Path(exists=True), help="Playwright spec file")
@click.option("--write", is_flag=True, help="Write the isolated version back to the file")
def isolate(test_file: str, write: bool) -> None:
    """Namespace hard-coded test data with a per-run id."""
    path = Path(test_file)
    code = path.read_text(encoding="utf-8")
    result = apply_data_fix(code)

    if not result.applied:
        console.print(f"[dim]{escape(result.description)}[/]")
        return

    console.print(f"[cyan]{escape(result.description)}[/]")
    _print_diff(code, result.code, test_file, "isolated")

    if write:
        path.write_text(result.code, encoding="utf-8")
        console.print(f"[green]✓ Wrote {test_file}[/]")


def _print_diff(before: str, after: str, name: str, label: str) -> None:
    diff = difflib.unified_diff(
        before.splitlines(),
        after.splitlines(),
        fromfile=name,
        tofile=f"{name} ({label})",
        lineterm="",
    )
    for line in diff:
        if line.startswith("+") and not line.startswith("+++"):
            console.print(f"[green]{escape(line)}[/]")
        elif line.startswith("-") and not line.startswith("---"):
            console.print(f"[red]{escape(line)}[/]")
        else:
            console.print(f"[dim]{escape(line)}[/]")
    console.print()


@main.command(name="log")
@click.argument("journey_id", required=False)
@click.option("--output-dir", "-o", type=click.Path(), help="Directory holding heal logs")
@click.option("--aggregate", is_flag=True, help="Summarize every heal log in the directory")
@click.pass_context
def log_cmd(ctx: click.Context, journey_id: str | None, output_dir: str | None, aggregate: bool) -> None:
    """Show a journey's heal log, or aggregate all of them."""
    config: Config = ctx.obj["config"]
    directory = Path(output_dir) if output_dir else config.output_dir

    if aggregate or journey_id is None:
        logs = [
            log for path in sorted(directory.glob(f"*{LOG_SUFFIX}"))
            if (log := load_healing_log(path)) is not None
        ]
        stats = aggregate_healing_logs(logs)

        table = Table(title=f"Heal logs in {directory}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Journeys", str(stats.total_journeys))
        table.add_row("Healed", f"[green]{stats.healed}[/]")
        table.add_row("Failed", f"[red]{stats.failed}[/]")
        table.add_row("Exhausted", f"[yellow]{stats.exhausted}[/]")
        table.add_row("Attempts", str(stats.total_attempts))
        console.print(table)

        if stats.most_common_fixes:
            fixes = ", ".join(f"{fix} ({count})" for fix, count in stats.most_common_fixes)
            console.print(f"[bold]Most common fixes:[/] {fixes}")
        if stats.most_common_failures:
            failures = ", ".join(f"{f} ({count})" for f, count in stats.most_common_failures)
            console.print(f"[bold]Most common failures:[/] {failures}")
        return

    path = heal_log_path(directory, journey_id)
    healing_log = load_healing_log(path)
    if healing_log is None:
        raise click.ClickException(f"No heal log found at {path}")

    console.print(Markdown(format_healing_log(healing_log)))


if __name__ == "__main__":
    main()
