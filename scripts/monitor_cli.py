from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from activity.collectors import JsonFileCollector, write_events_json
from activity.models import ProcessedData, ensure_utc, parse_timestamp
from config.settings import get_settings
from runtime.pipeline import ActivityPipeline

app = typer.Typer(help="Correlate cross-platform team activity and keep a rolling memory.")
console = Console()


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _render_summary(processed: ProcessedData, previous: dict | None) -> None:
    stats = processed.summary_stats
    table = Table(title="Activity Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_column("Previous", justify="right")

    def _prev(key: str) -> str:
        return str(previous.get(key, "-")) if previous else "-"

    table.add_row("Events", str(stats.total_events), _prev("total_events"))
    table.add_row("Contributors", str(stats.unique_contributors), _prev("unique_contributors"))
    table.add_row("Correlations", str(len(processed.correlations)), _prev("correlations"))
    table.add_row("Action Items", str(len(processed.action_items)), _prev("action_items"))
    table.add_row("Repositories", str(stats.repositories_active), "-")
    table.add_row("Projects", str(stats.projects_active), "-")
    for platform, count in sorted(stats.events_by_platform.items()):
        table.add_row(f"  {platform}", str(count), "-")
    console.print(table)

    if processed.correlations:
        corr_table = Table(title="Correlations")
        corr_table.add_column("Kind")
        corr_table.add_column("Confidence", justify="right")
        corr_table.add_column("Description")
        for correlation in processed.correlations:
            corr_table.add_row(
                correlation.kind.value,
                f"{correlation.confidence:.2f}",
                correlation.description,
            )
        console.print(corr_table)

    if processed.action_items:
        item_table = Table(title="Action Items")
        item_table.add_column("Kind")
        item_table.add_column("Priority")
        item_table.add_column("Title")
        item_table.add_column("Assignee")
        for item in processed.action_items:
            item_table.add_row(item.kind.value, item.priority.value, item.title, item.assignee or "")
        console.print(item_table)

    if processed.trending_topics:
        console.print(
            "[bold]Trending:[/bold] "
            + ", ".join(f"{topic.keyword} ({topic.frequency})" for topic in processed.trending_topics)
        )


@app.command("run")
def run(
    events: list[Path] = typer.Option(..., "--events", exists=True, dir_okay=False, help="Exported event JSON file(s)."),
    hours: int = typer.Option(24, min=1, help="Window size ending at --until."),
    until: str = typer.Option("", help="Window end (ISO timestamp). Defaults to now."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results to rolling memory."),
    export: Optional[Path] = typer.Option(None, "--export", dir_okay=False, help="Write the normalized events to this JSON file."),
    log_level: str = typer.Option("INFO", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    window_end = parse_timestamp(until) if until else datetime.now(timezone.utc)
    window_start = window_end - timedelta(hours=hours)

    pipeline = ActivityPipeline.from_settings(get_settings())
    collectors = [JsonFileCollector(path) for path in events]
    processed = pipeline.run(collectors, window_start, window_end, persist=persist)
    if export is not None:
        written = write_events_json(export, processed.events)
        console.print(f"Exported {len(processed.events)} event(s) to {written}")
    previous = pipeline.memory.recall_previous_report(ensure_utc(window_end).date())
    _render_summary(processed, previous)


@app.command("context")
def context(
    day: str = typer.Option("", "--date", help="Context date (YYYY-MM-DD). Lists stored dates if omitted."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    memory = ActivityPipeline.from_settings(get_settings()).memory
    if not day:
        dates = memory.stored_dates()
        console.print("\n".join(dates) if dates else "[yellow]No stored contexts.[/yellow]")
        return

    stored = memory.get_context(day)
    if stored is None:
        console.print(f"[yellow]No context stored for {day}.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"Memory Context {stored.date}")
    table.add_column("Section")
    table.add_column("Value")
    table.add_row("Profiles", ", ".join(sorted(stored.contributor_profiles)) or "-")
    for key, values in sorted(stored.project_relationships.items()):
        table.add_row(f"Relation {key}", ", ".join(values))
    table.add_row("Trending", ", ".join(topic.keyword for topic in stored.trending_topics) or "-")
    velocity = stored.velocity_metrics
    table.add_row(
        "Velocity",
        f"PRs {velocity.daily_pr_count}, issues {velocity.daily_issue_count}, "
        f"review {velocity.avg_review_time_hours}h, deploys {velocity.deployment_frequency}",
    )
    for entry in stored.action_items_history:
        table.add_row(
            f"History {entry.date}",
            f"new {entry.new_count}, resolved {entry.resolved_count}, overdue {entry.overdue_count}",
        )
    console.print(table)


@app.command("velocity")
def velocity(
    days: int = typer.Option(7, min=1, help="Days to look back."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    memory = ActivityPipeline.from_settings(get_settings()).memory
    table = Table(title="Velocity Trend")
    table.add_column("Date")
    table.add_column("PRs", justify="right")
    table.add_column("Issues", justify="right")
    table.add_column("Review Hours", justify="right")
    table.add_column("Deploys", justify="right")
    for day, metrics in memory.recall_velocity_trend(days):
        table.add_row(
            day,
            str(metrics.daily_pr_count),
            str(metrics.daily_issue_count),
            f"{metrics.avg_review_time_hours:.2f}",
            str(metrics.deployment_frequency),
        )
    console.print(table)


@app.command("profile")
def profile(
    contributor_id: str = typer.Argument(..., help="Contributor id as recorded on its platform."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    memory = ActivityPipeline.from_settings(get_settings()).memory
    found = memory.recall_profile(contributor_id)
    if found is None:
        console.print(f"[yellow]No profile for {contributor_id} in the last {memory.window_days} days.[/yellow]")
        raise typer.Exit(code=1)

    patterns = found.activity_patterns
    table = Table(title=f"Contributor {found.name}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Platforms", ", ".join(f"{key}={value}" for key, value in found.platforms.items()))
    table.add_row("Active Hours", ", ".join(str(hour) for hour in patterns.most_active_hours))
    table.add_row("Preferred", ", ".join(patterns.preferred_platforms))
    table.add_row("Avg Daily Events", f"{patterns.avg_daily_events:.1f}")
    table.add_row("Expertise", ", ".join(found.expertise_areas))
    table.add_row("Recent Focus", ", ".join(found.recent_focus))
    console.print(table)


@app.command("cleanup")
def cleanup(
    log_level: str = typer.Option("INFO", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    memory = ActivityPipeline.from_settings(get_settings()).memory
    key = memory.cleanup()
    console.print(f"Removed {key} (if present).")


if __name__ == "__main__":
    app()
