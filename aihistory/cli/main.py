"""aihistory CLI - inspect and audit AI history snapshots."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..context import ObservabilityContext
from ..core.types import InteractionStatus
from ..validation.render import to_json, to_markdown, to_prometheus


def _load_snapshot_safely(snapshot_file: str) -> Optional[ObservabilityContext]:
    """Load a snapshot file with proper error handling.

    Returns:
        ObservabilityContext if successful, None if failed (error message already printed).
    """
    try:
        return ObservabilityContext.load_snapshot(Path(snapshot_file))
    except FileNotFoundError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        return None
    except PermissionError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        return None
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        return None


@click.group()
@click.version_option(version=__version__, prog_name="aihistory")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """aihistory - audit AI interactions and the provider calls behind them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("snapshot_file", type=click.Path())
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats(snapshot_file: str, as_json: bool):
    """Show interaction and call statistics for a snapshot.

    Examples:
        aihistory stats snapshot.json
        aihistory stats --json snapshot.yaml
    """
    context = _load_snapshot_safely(snapshot_file)
    if context is None:
        sys.exit(1)

    interaction_stats = context.interaction_statistics()
    call_stats = context.call_statistics()

    if as_json:
        click.echo(json.dumps({
            "interactions": interaction_stats.to_dict(),
            "calls": call_stats.to_dict(),
        }, indent=2))
        return

    click.echo(f"Session: {interaction_stats.session_id}")
    click.echo(f"Interactions: {interaction_stats.total_interactions} recorded, "
               f"{interaction_stats.pending_interactions} pending")
    click.echo(f"  Success: {interaction_stats.successful_interactions}  "
               f"Error: {interaction_stats.failed_interactions}  "
               f"Cancelled: {interaction_stats.cancelled_interactions}")
    click.echo(f"  Success rate: {interaction_stats.success_rate * 100:.1f}%")
    click.echo(f"  Avg duration: {interaction_stats.average_duration_ms:.0f}ms")
    click.echo(f"  Est. cost: ${interaction_stats.total_estimated_cost:.4f}")
    click.echo(f"Calls: {call_stats.total_calls} finalized, {call_stats.pending_calls} pending")
    click.echo(f"  Successful: {call_stats.successful_calls}  Failed: {call_stats.failed_calls}")
    click.echo(f"  Avg response: {call_stats.average_response_time:.0f}ms")

    if interaction_stats.interactions_by_provider:
        click.echo()
        click.echo("By provider:")
        for provider, count in sorted(interaction_stats.interactions_by_provider.items()):
            click.echo(f"  {provider}: {count}")


@cli.command()
@click.argument("snapshot_file", type=click.Path())
@click.option("--comprehensive", "-c", is_flag=True, help="Run the detailed analyses")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--markdown", "as_markdown", is_flag=True, help="Output a Markdown report")
@click.option("--prometheus", "as_prometheus", is_flag=True, help="Output Prometheus exposition format")
@click.option("--fail-under", type=float, default=None, help="Exit with status 2 if the score is below this")
def validate(
    snapshot_file: str,
    comprehensive: bool,
    as_json: bool,
    as_markdown: bool,
    as_prometheus: bool,
    fail_under: Optional[float],
):
    """Audit a snapshot for pending interactions and orphaned calls.

    Examples:
        aihistory validate snapshot.json
        aihistory validate --comprehensive --markdown snapshot.json
        aihistory validate --fail-under 95 snapshot.json
    """
    context = _load_snapshot_safely(snapshot_file)
    if context is None:
        sys.exit(1)

    report = context.validate(comprehensive=comprehensive)

    if as_json:
        click.echo(to_json(report))
    elif as_markdown:
        click.echo(to_markdown(report))
    elif as_prometheus:
        click.echo(to_prometheus(report), nl=False)
    else:
        score = report.integrity_score
        color = "green" if score >= context.config.score_threshold else "red"
        click.echo("Integrity score: " + click.style(f"{score:.1f}", fg=color, bold=True))
        click.echo(f"Recorded interactions: {report.recorded_interactions}")
        click.echo(f"Pending interactions: {len(report.missing_interactions)}")
        click.echo(f"API calls: {report.total_api_calls} ({len(report.orphaned_api_calls)} orphaned)")
        if report.partial:
            click.echo(click.style("Comprehensive validation failed; showing quick results", fg="yellow"))
        if report.recommendations:
            click.echo()
            click.echo("Recommendations:")
            for finding in report.recommendations:
                fg = {"error": "red", "warning": "yellow"}.get(finding.type)
                click.echo("  " + click.style(f"[{finding.priority}]", fg=fg) + f" {finding.message}")

    if fail_under is not None and report.integrity_score < fail_under:
        sys.exit(2)


@cli.command()
@click.argument("snapshot_file", type=click.Path())
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def calls(snapshot_file: str, as_json: bool):
    """List pending and finalized API calls.

    Examples:
        aihistory calls snapshot.json
    """
    context = _load_snapshot_safely(snapshot_file)
    if context is None:
        sys.exit(1)

    pending = sorted(context.calls.pending_calls(), key=lambda c: c.start_time)
    finalized = sorted(context.calls.finalized_calls(), key=lambda c: c.start_time)

    if as_json:
        click.echo(json.dumps({
            "pending": [c.to_dict() for c in pending],
            "finalized": [c.to_dict() for c in finalized],
            "statistics": context.call_statistics().to_dict(),
        }, indent=2, default=str))
        return

    if not pending and not finalized:
        click.echo("No API calls in snapshot.")
        return

    if pending:
        click.echo(click.style(f"Pending ({len(pending)}):", fg="yellow"))
        for call in pending:
            click.echo(f"  {call.call_id}  {call.provider}/{call.model}  {call.method} {call.endpoint}")
        click.echo()

    click.echo(f"Finalized ({len(finalized)}):")
    for call in finalized:
        if call.success:
            outcome = click.style("ok", fg="green")
        else:
            outcome = click.style(call.error.code if call.error else "failed", fg="red")
        duration = call.duration_ms or 0.0
        click.echo(f"  {call.call_id}  {call.provider}/{call.model}  {call.endpoint}  "
                   f"{outcome} ({duration:.0f}ms)")


@cli.command()
@click.argument("snapshot_file", type=click.Path())
def timeline(snapshot_file: str):
    """Show interactions in start order with their linked calls.

    Examples:
        aihistory timeline snapshot.json
    """
    context = _load_snapshot_safely(snapshot_file)
    if context is None:
        sys.exit(1)

    interactions = context.interactions.get_all_interactions() + context.interactions.get_pending_interactions()
    if not interactions:
        click.echo("No interactions in snapshot.")
        return

    status_colors = {
        InteractionStatus.SUCCESS: "green",
        InteractionStatus.ERROR: "red",
        InteractionStatus.CANCELLED: "yellow",
        InteractionStatus.PENDING: "cyan",
    }

    click.echo(f"Timeline for session {context.session_id}:")
    click.echo()
    for interaction in sorted(interactions, key=lambda i: i.timestamp):
        status = click.style(interaction.status.value, fg=status_colors.get(interaction.status))
        kind = getattr(interaction.type, "value", interaction.type)
        duration = f" ({interaction.duration_ms:.0f}ms)" if interaction.duration_ms is not None else ""
        click.echo(f"{interaction.timestamp.isoformat()}  {kind}  "
                   f"{interaction.provider}/{interaction.model}  {status}{duration}")
        for call_id in interaction.metadata.api_call_ids:
            click.echo(f"    └─ {call_id}")


@cli.command()
@click.option("--port", "-p", default=8080, help="Port to run the debug API on")
@click.option("--host", "-h", default="127.0.0.1", help="Host to bind to")
@click.option("--file", "-f", "snapshot_file", type=click.Path(exists=True), help="Snapshot to serve")
def dashboard(port: int, host: str, snapshot_file: Optional[str]):
    """Serve the debug API over a snapshot (or an empty context).

    Examples:
        aihistory dashboard --file snapshot.json
        aihistory dashboard --port 3000
    """
    if snapshot_file:
        context = _load_snapshot_safely(snapshot_file)
        if context is None:
            sys.exit(1)
    else:
        context = ObservabilityContext()

    click.echo(click.style("aihistory debug API", fg="cyan", bold=True))
    click.echo()
    click.echo(f"  Snapshot: {snapshot_file or '(empty context)'}")
    click.echo("  URL: " + click.style(f"http://{host}:{port}/api/health", fg="green", bold=True))
    click.echo()
    click.echo("Press Ctrl+C to stop the server")

    try:
        from ..dashboard import run_dashboard
        run_dashboard(context, host=host, port=port)
    except ImportError as e:
        click.echo(click.style(f"Error: Dashboard dependencies not installed: {e}", fg="red"))
        click.echo()
        click.echo("Install them with:")
        click.echo("  pip install fastapi uvicorn slowapi")
        sys.exit(1)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
