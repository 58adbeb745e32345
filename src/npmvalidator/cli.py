"""CLI entry point for npm-validator."""

import asyncio
import json
import logging
from pathlib import Path
from typing import NoReturn

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from npmvalidator.analyzers.pipeline import AnalysisPipeline
from npmvalidator.config import Settings
from npmvalidator.exceptions import NpmValidatorError
from npmvalidator.models.schemas import AnalysisResult, Rating, Recommendation, Severity
from npmvalidator.validation import parse_package_identity
from npmvalidator.versions import InvalidVersionError

app = typer.Typer(help="npm package quality and security validator.")

console = Console()

SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MODERATE: "yellow",
    Severity.LOW: "dim",
}

RECOMMENDATION_COLORS = {
    Recommendation.RECOMMENDED: "green",
    Recommendation.USE_WITH_CAUTION: "yellow",
    Recommendation.NOT_RECOMMENDED: "red",
}

RATING_COLORS = {
    Rating.EXCELLENT: "green",
    Rating.GOOD: "green",
    Rating.FAIR: "yellow",
    Rating.POOR: "red",
}


def format_days_since_release(days: int) -> str:
    """Format a day count for display.

    Examples:
        1 -> "1 day ago", 40 -> "40 days ago", 365 -> "1yr",
        367 -> "1yr 2 days", 730 -> "2yrs"
    """
    if days >= 365:
        years, remaining = divmod(days, 365)
        year_label = "1yr" if years == 1 else f"{years}yrs"
        if remaining == 0:
            return year_label
        return f"{year_label} {remaining} {'day' if remaining == 1 else 'days'}"
    return f"{days} {'day' if days == 1 else 'days'} ago"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Validate npm packages before you depend on them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]{escape(str(error))}[/red]")
    raise typer.Exit(1)


@app.command()
def analyze(
    package: str = typer.Argument(..., help="Package name to analyze"),
    ai: bool = typer.Option(False, "--ai/--no-ai", help="Also generate an AI verdict"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
) -> None:
    """Analyze a package and calculate its quality score."""
    asyncio.run(_analyze_package(package, ai, output))


async def _analyze_package(package: str, with_verdict: bool, output: Path | None) -> None:
    """Async implementation of analyze."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Analyzing {package}...", total=None)

        async with AnalysisPipeline(Settings.from_env()) as pipeline:
            try:
                result = await pipeline.analyze(package, with_verdict=with_verdict)
            except NpmValidatorError as e:
                progress.stop()
                _fail(e)

    _print_result(result)

    if output:
        output.write_text(json.dumps(result.model_dump(mode="json"), indent=2, default=str))
        console.print(f"\n[green]Saved to {output}[/green]")


def _print_result(result: AnalysisResult) -> None:
    metadata = result.metadata

    console.print()
    console.print(f"[bold cyan]{escape(metadata.name)}[/bold cyan] v{escape(metadata.version or '')}")
    if metadata.description:
        console.print(f"[dim]{escape(metadata.description)}[/dim]")
    if metadata.deprecated:
        console.print(f"[bold red]Deprecated:[/bold red] {escape(metadata.deprecated)}")
    console.print()

    info_table = Table(show_header=False, box=None)
    info_table.add_column("Key", style="bold")
    info_table.add_column("Value")

    info_table.add_row("npm", result.npm_url)
    info_table.add_row("Homepage", escape(metadata.homepage or "-"))
    info_table.add_row("Repository", escape(metadata.repository_url or "-"))
    info_table.add_row("License", escape(metadata.license or "-"))

    days = result.days_since_last_release
    if days is not None:
        info_table.add_row("Last Release", format_days_since_release(days))
    if result.downloads:
        info_table.add_row("Monthly Downloads", f"{result.downloads.downloads:,}")
    if result.popularity and result.popularity.dependents is not None:
        info_table.add_row("Dependents", f"{result.popularity.dependents:,}")
    if result.repository:
        repo = result.repository
        info_table.add_row("Stars", f"{repo.stars:,}")
        info_table.add_row("Forks", f"{repo.forks:,}")
        info_table.add_row("Open Issues", str(repo.open_issues))
        if repo.is_archived:
            info_table.add_row("Archived", "[red]Yes[/red]")
        if repo.releases:
            info_table.add_row("Latest Release", escape(repo.releases[0].tag_name))

    console.print(info_table)
    console.print()

    score = result.score
    score_color = "green" if score.overall >= 80 else "yellow" if score.overall >= 60 else "red"
    console.print(
        Panel(
            f"[bold][{score_color}]{score.overall}[/{score_color}][/bold] / 100"
            f"  [dim]({score.signals} of 4 signals)[/dim]",
            title="Quality Score",
            expand=False,
        )
    )

    scores_table = Table(title="Score Breakdown", show_header=True)
    scores_table.add_column("Signal", style="bold")
    scores_table.add_column("Points", justify="right")
    components = [
        ("Popularity", score.popularity, 25),
        ("Downloads", score.downloads, 25),
        ("Maintenance", score.maintenance, 25),
        ("Security", score.security, 20),
    ]
    for name, points, maximum in components:
        value = f"{points}/{maximum}" if points is not None else "[dim]n/a[/dim]"
        scores_table.add_row(name, value)
    console.print(scores_table)

    _print_security(result)

    if result.errors:
        console.print()
        console.print("[bold yellow]Unavailable sources:[/bold yellow]")
        for source, error in result.errors.items():
            console.print(f"  [yellow]![/yellow] {source}: {escape(error.hint)}")

    if result.verdict:
        _print_verdict(result)


def _print_security(result: AnalysisResult) -> None:
    security = result.security
    console.print()
    if "security" in result.errors:
        console.print("[bold]Security:[/bold] [dim]advisory data unavailable[/dim]")
        return
    if not security.has_vulnerabilities:
        console.print("[bold]Security:[/bold] [green]No known vulnerabilities[/green]")
        return

    table = Table(title=f"Security Advisories ({security.total_count})", show_header=True)
    table.add_column("Severity", style="bold")
    table.add_column("ID")
    table.add_column("Title", max_width=50)
    table.add_column("Vulnerable", style="dim")
    table.add_column("Patched", style="green")

    for advisory in security.vulnerabilities:
        color = SEVERITY_COLORS[advisory.severity]
        table.add_row(
            f"[{color}]{advisory.severity.value}[/{color}]",
            escape(advisory.id),
            escape(advisory.title),
            escape(advisory.vulnerable_version_range or "-"),
            escape(advisory.first_patched_version or "-"),
        )
    console.print(table)


def _print_verdict(result: AnalysisResult) -> None:
    verdict = result.verdict
    color = RECOMMENDATION_COLORS[verdict.recommendation]

    lines = [
        f"[bold {color}]{verdict.recommendation.value}[/bold {color}]  "
        f"score {verdict.overall_score}/100",
        "",
        escape(verdict.summary),
        "",
    ]
    for label, rating in (
        ("Security", verdict.security_rating),
        ("Quality", verdict.quality_rating),
        ("Maintenance", verdict.maintenance_rating),
    ):
        rating_color = RATING_COLORS[rating]
        lines.append(f"{label}: [{rating_color}]{rating.value}[/{rating_color}]")

    if verdict.strengths:
        lines.append("")
        lines.append("[bold green]Strengths:[/bold green]")
        lines.extend(f"  [green]+[/green] {escape(item)}" for item in verdict.strengths)
    if verdict.concerns:
        lines.append("")
        lines.append("[bold yellow]Concerns:[/bold yellow]")
        lines.extend(f"  [yellow]![/yellow] {escape(item)}" for item in verdict.concerns)
    if verdict.reasoning:
        lines.append("")
        lines.append(f"[dim]{escape(verdict.reasoning)}[/dim]")

    console.print()
    console.print(
        Panel("\n".join(lines), title=f"AI Verdict ({verdict.model or 'unknown model'})", expand=False)
    )


@app.command()
def check_version(
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Version to check, e.g. 4.17.20"),
) -> None:
    """List the security advisories that apply to a specific version."""
    asyncio.run(_check_version(package, version))


async def _check_version(package: str, version: str) -> None:
    """Async implementation of check_version."""
    async with AnalysisPipeline(Settings.from_env()) as pipeline:
        try:
            report = await pipeline.check_version(package, version)
        except (NpmValidatorError, InvalidVersionError) as e:
            _fail(e)

    console.print()
    console.print(f"[bold cyan]{escape(report.package)}[/bold cyan] v{escape(report.version)}")

    if report.error:
        console.print(f"[yellow]Advisory data unavailable:[/yellow] {escape(report.error.hint)}")
        raise typer.Exit(1)

    security = report.security
    if not security.has_vulnerabilities:
        console.print("[green]No known vulnerabilities affect this version[/green]")
        return

    console.print(
        f"[red]{security.total_count} advisories apply[/red] "
        f"(critical {security.critical}, high {security.high}, "
        f"moderate {security.moderate}, low {security.low})"
    )
    for advisory in security.vulnerabilities:
        color = SEVERITY_COLORS[advisory.severity]
        fix = f" (fixed in {escape(advisory.first_patched_version)})" if advisory.first_patched_version else ""
        console.print(f"  [{color}]{advisory.severity.value:>8}[/{color}] {escape(advisory.id)} {escape(advisory.title)}{fix}")
        if advisory.url:
            console.print(f"           [dim]{escape(advisory.url)}[/dim]")


@app.command()
def versions(
    package: str = typer.Argument(..., help="Package name"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of versions to list"),
) -> None:
    """List stable published versions, newest first."""
    asyncio.run(_list_versions(package, limit))


async def _list_versions(package: str, limit: int) -> None:
    """Async implementation of versions."""
    async with AnalysisPipeline(Settings.from_env()) as pipeline:
        try:
            identity = parse_package_identity(package)
            metadata = await pipeline.fetch_metadata(identity)
        except NpmValidatorError as e:
            _fail(e)

    stable = metadata.stable_versions()
    table = Table(title=f"{metadata.name} ({len(stable)} stable versions)")
    table.add_column("Version", style="cyan")
    table.add_column("Published", style="dim")

    for version in stable[:limit]:
        published = metadata.publish_times.get(version)
        marker = " [green](latest)[/green]" if version == metadata.version else ""
        table.add_row(f"{escape(version)}{marker}", published.strftime("%Y-%m-%d") if published else "-")

    console.print(table)
    if len(stable) > limit:
        console.print(f"[dim]... and {len(stable) - limit} more[/dim]")


@app.command()
def similar(
    package: str = typer.Argument(..., help="Package name"),
    limit: int = typer.Option(6, "--limit", "-n", help="Number of packages to list"),
) -> None:
    """Find packages similar to the given one."""
    asyncio.run(_similar(package, limit))


async def _similar(package: str, limit: int) -> None:
    """Async implementation of similar."""
    async with AnalysisPipeline(Settings.from_env()) as pipeline:
        try:
            packages = await pipeline.find_similar(package, limit=limit)
        except NpmValidatorError as e:
            _fail(e)

    if not packages:
        console.print("[dim]No similar packages found[/dim]")
        return

    table = Table(title=f"Packages similar to {package}")
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="dim")
    table.add_column("Description", max_width=60)
    for item in packages:
        table.add_row(escape(item.name), escape(item.version or "-"), escape(item.description[:60]))
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from npmvalidator import __version__

    console.print(f"npm-validator v{__version__}")


if __name__ == "__main__":
    app()
