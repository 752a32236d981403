"""CLI entry point for guardpkg."""

import asyncio
import json
import logging
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from guardpkg.analyzers.pipeline import AnalysisPipeline
from guardpkg.config import (
    InstallPolicy,
    Settings,
    load_install_policy,
    parse_install_policy,
    save_install_policy,
    should_block_install,
)
from guardpkg.errors import GuardPkgError, InvalidConfiguration, NetworkError
from guardpkg.models.schemas import AnalysisReport, DependencyStatus

app = typer.Typer(help="Pre-install security scoring for npm packages.")

console = Console()

EXIT_OK = 0
EXIT_SECURITY_CHECK_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_NETWORK_ERROR = 3


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Pre-install security scoring for npm packages."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid settings: {e}") from e


def _handle_error(e: GuardPkgError) -> typer.Exit:
    """Print an error and return the matching exit."""
    if isinstance(e, NetworkError):
        console.print(f"[red]Network error: {e}[/red]")
        return typer.Exit(EXIT_NETWORK_ERROR)
    if isinstance(e, InvalidConfiguration):
        console.print(f"[red]Configuration error: {e}[/red]")
        return typer.Exit(EXIT_CONFIGURATION_ERROR)
    console.print(f"[red]Error analyzing package: {e}[/red]")
    return typer.Exit(EXIT_SECURITY_CHECK_FAILED)


async def _run_analysis(settings: Settings, package: str, version: str, quiet: bool) -> AnalysisReport:
    async with AnalysisPipeline(settings=settings) as pipeline:
        if quiet:
            return await pipeline.analyze_package(package, version)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Analyzing {package}@{version}...", total=None)
            return await pipeline.analyze_package(package, version)


@app.command()
def analyze(
    package: str = typer.Argument(..., help="Package name to analyze"),
    version: str = typer.Option("latest", "--version", "-v", help="Version, dist-tag or range"),
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Show detailed findings"),
    score_only: bool = typer.Option(False, "--score-only", help="Print only the numeric score"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
) -> None:
    """Analyze a package and calculate its security score."""
    try:
        settings = _load_settings()
        report = asyncio.run(_run_analysis(settings, package, version, quiet=score_only))
    except GuardPkgError as e:
        raise _handle_error(e)

    if score_only:
        console.print(str(report.score))
    else:
        _print_report(report, detailed)

    if output:
        AnalysisPipeline.save_report(report, output)
        if not score_only:
            console.print(f"\n[green]Saved to {output}[/green]")


@app.command()
def check(
    package: str = typer.Argument(..., help="Package name to check"),
    version: str = typer.Option("latest", "--version", "-v", help="Version, dist-tag or range"),
) -> None:
    """Check a package against the install policy.

    Exits with status 1 when the install should be blocked.
    """
    try:
        settings = _load_settings()
        policy = load_install_policy(config_path=settings.config_path)
    except GuardPkgError as e:
        raise _handle_error(e)

    if not policy.auto_check:
        console.print("[dim]Automatic checks are disabled, skipping[/dim]")
        raise typer.Exit(EXIT_OK)

    try:
        report = asyncio.run(_run_analysis(settings, package, version, quiet=False))
    except GuardPkgError as e:
        raise _handle_error(e)

    color = _score_color(report.score)
    console.print(f"[bold cyan]{report.package}[/bold cyan] scored [{color}]{report.score}/100[/{color}]")

    if should_block_install(report.score, policy):
        console.print(
            f"[bold red]Installation blocked:[/bold red] score {report.score} is below "
            f"the threshold of {policy.score_threshold}"
        )
        for risk in report.risks:
            console.print(f"  [red]x[/red] {risk}")
        raise typer.Exit(EXIT_SECURITY_CHECK_FAILED)

    console.print("[green]Package passed the security check[/green]")


@app.command()
def config(
    auto_check: str | None = typer.Option(None, "--auto-check", help="Run checks automatically (true/false)"),
    score_threshold: int | None = typer.Option(None, "--score-threshold", help="Minimum score to allow install"),
    block_install: str | None = typer.Option(None, "--block-install", help="Block installs below the threshold (true/false)"),
) -> None:
    """Show or update the install policy."""
    try:
        settings = _load_settings()
        path = settings.config_path
        current = load_install_policy(env={}, config_path=path)

        updates = {
            key: value
            for key, value in {
                "autoCheck": auto_check,
                "scoreThreshold": score_threshold,
                "blockInstall": block_install,
            }.items()
            if value is not None
        }
        if updates:
            merged = {**current.model_dump(by_alias=True), **updates}
            policy = parse_install_policy(json.dumps(merged))
            save_install_policy(policy, path)
            console.print(f"[green]Configuration saved to {path}[/green]")
        else:
            policy = current
    except GuardPkgError as e:
        raise _handle_error(e)

    _print_policy(policy)


def _print_policy(policy: InstallPolicy) -> None:
    table = Table(title="Install Policy", show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Auto check", "Yes" if policy.auto_check else "No")
    table.add_row("Score threshold", str(policy.score_threshold))
    table.add_row("Block install", "Yes" if policy.block_install else "No")
    console.print(table)


def _score_color(score: float) -> str:
    return "green" if score >= 80 else "yellow" if score >= 50 else "red"


def _score_bar(score: float, width: int = 20) -> str:
    """Create a visual score bar."""
    filled = int(score / 100 * width)
    empty = width - filled
    color = _score_color(score)
    return f"[{color}]{'█' * filled}[/{color}][dim]{'░' * empty}[/dim]"


def _print_report(report: AnalysisReport, detailed: bool) -> None:
    """Render an analysis report to the console."""
    metadata = report.metadata

    console.print()
    console.print(f"[bold cyan]{metadata.name}[/bold cyan] v{metadata.version}")
    if metadata.description:
        console.print(f"[dim]{metadata.description}[/dim]")
    console.print()

    color = _score_color(report.score)
    console.print(
        Panel(
            f"[bold][{color}]{report.score}[/{color}][/bold] / 100  Grade: [bold]{report.grade}[/bold]  "
            f"Risk: [bold]{report.risk_level}[/bold]\n{_score_bar(report.score)}",
            title="Security Score",
            expand=False,
        )
    )

    if report.malware_detected:
        console.print("[bold red]Known malware detected. Do not install this package.[/bold red]")

    if report.deductions:
        table = Table(title="Deductions", show_header=True)
        table.add_column("Reason")
        table.add_column("Category", style="dim")
        table.add_column("Points", justify="right", style="red")
        for deduction in report.deductions:
            table.add_row(deduction.reason, deduction.category, f"-{deduction.points}")
        console.print(table)

    vulns = report.vulnerabilities
    console.print()
    console.print("[bold]Vulnerabilities:[/bold]")
    console.print(
        f"  Critical: [red]{len(vulns.critical)}[/red]  High: [yellow]{len(vulns.high)}[/yellow]  "
        f"Moderate: [blue]{len(vulns.moderate)}[/blue]  Low: {len(vulns.low)}"
    )

    for warning in report.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")

    if detailed:
        _print_details(report)


def _print_details(report: AnalysisReport) -> None:
    metrics = report.metrics

    info_table = Table(title="Package Metrics", show_header=False, box=None)
    info_table.add_column("Key", style="bold")
    info_table.add_column("Value")

    def status(val: bool) -> str:
        return "[green]Yes[/green]" if val else "[dim]No[/dim]"

    info_table.add_row("License", report.metadata.license or "-")
    info_table.add_row("Repository", report.metadata.repository_url or "-")
    info_table.add_row("30d Downloads", f"{report.downloads:,}")
    info_table.add_row("Suspicious scripts", status(metrics.has_suspicious_scripts))
    info_table.add_row("Exec scripts", status(metrics.has_exec_scripts))
    info_table.add_row("Minified code", status(metrics.has_minified_code))
    info_table.add_row("Lock file", status(metrics.has_lock_file))
    info_table.add_row("Security policy", status(metrics.has_security_policy))
    info_table.add_row("Dependencies", str(metrics.dependency_count.total))
    info_table.add_row(
        "Last update",
        f"{metrics.last_update_age} days ago" if metrics.last_update_age is not None else "-",
    )
    if report.publisher:
        info_table.add_row("Publisher", report.publisher.username or "-")
        info_table.add_row("Publisher trust", str(report.publisher.trust_score))
    info_table.add_row("Deep analysis", status(report.deep_analysis))
    console.print()
    console.print(info_table)

    for script in metrics.suspicious_scripts:
        console.print(f"  [yellow]![/yellow] scripts.{script.name}: {script.script}")

    for dep in metrics.outdated_dependencies:
        console.print(f"  [dim]outdated[/dim] {dep.name} {dep.requested} resolves {dep.resolved}, latest {dep.latest}")

    if report.suspicious_patterns:
        patterns_table = Table(title="Suspicious Patterns", show_header=True)
        patterns_table.add_column("Category", style="bold")
        patterns_table.add_column("Severity")
        patterns_table.add_column("Location", style="dim")
        patterns_table.add_column("Description")
        for pattern in report.suspicious_patterns:
            patterns_table.add_row(pattern.category, pattern.severity.value, pattern.location, pattern.description)
        console.print()
        console.print(patterns_table)

    if report.dependencies:
        deps_table = Table(title="Dependencies", show_header=True)
        deps_table.add_column("Package", style="cyan")
        deps_table.add_column("Depth", justify="right")
        deps_table.add_column("Score", justify="right")
        deps_table.add_column("Status", style="dim")
        for dep in report.dependencies:
            if dep.status == DependencyStatus.MISSING or dep.score is None:
                score = "-"
            else:
                c = _score_color(dep.score)
                score = f"[{c}]{dep.score}[/{c}]"
            deps_table.add_row(f"{dep.name}@{dep.version}", str(dep.depth), score, dep.status.value)
        console.print()
        console.print(deps_table)


@app.command()
def version() -> None:
    """Show version information."""
    from guardpkg import __version__

    console.print(f"guardpkg v{__version__}")


if __name__ == "__main__":
    app()
