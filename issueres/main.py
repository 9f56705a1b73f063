"""CLI entry point for issueres."""

import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click
import structlog

from issueres.config.settings import IssueResSettings
from issueres.engine.snapshot_store import SnapshotStore
from issueres.engine.types import WorkflowState
from issueres.enums import WorkflowStatus
from issueres.exceptions import ConfigurationError, IssueResError
from issueres.providers.factory import create_model_provider, create_repository_provider
from issueres.providers.github_rest import issue_from_event
from issueres.service import WorkflowService, snapshot_key
from issueres.utils.logging_config import bind_issue_context, configure_logging

log = structlog.get_logger(__name__)

T = TypeVar("T")


@click.group()
@click.option(
    "--config",
    default="issueres.yaml",
    help="Path to configuration file",
)
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--console-logs", is_flag=True, help="Human-readable logs instead of JSON")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str, console_logs: bool) -> None:
    """issueres: research, fix and open pull requests for GitHub issues."""
    configure_logging(log_level.upper(), json_output=not console_logs)

    # The CI action builds its settings from the job environment
    commands_without_config = ["action"]
    if ctx.invoked_subcommand in commands_without_config:
        ctx.obj = {"settings": None}
        return

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(1)

    try:
        settings = IssueResSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


def _run_command(name: str, coro_factory: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run a coroutine with the CLI's error handling and exit codes."""
    try:
        return asyncio.run(coro_factory())
    except IssueResError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{name}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{name}_unexpected", exc_info=True)
        sys.exit(1)


def _create_service(settings: IssueResSettings) -> WorkflowService:
    return WorkflowService(
        settings,
        create_repository_provider(settings),
        create_model_provider(settings),
        SnapshotStore(settings.snapshot_dir),
    )


async def _with_service(
    settings: IssueResSettings,
    operation: Callable[[WorkflowService], Awaitable[T]],
    connect_model: bool = True,
) -> T:
    service = _create_service(settings)
    await service.repository.connect()
    if connect_model:
        await service.model.connect()
    try:
        return await operation(service)
    finally:
        await service.repository.disconnect()
        await service.model.disconnect()


def _echo_state(state: WorkflowState, verbose: bool = False) -> None:
    issue = state.issue
    if issue is not None:
        click.echo(f"Issue #{issue.number}: {issue.title}")
    click.echo(f"Status: {state.status}")

    if state.status == WorkflowStatus.PAUSED_QUOTA and state.pause_context:
        pause = state.pause_context
        click.echo(
            f"Paused at {pause.step_name} (attempt {pause.attempt_count}): {pause.last_error}"
        )
        click.echo("Run 'issueres resume' once the quota has recovered.")
    if state.error:
        click.echo(f"Error: {state.error}")
    if state.plan:
        click.echo(f"\nPlan: {state.plan.analysis}")
        for i, step in enumerate(state.plan.steps, 1):
            click.echo(f"  {i}. {step}")
    if state.patches:
        click.echo(f"\nPatches ({len(state.patches)}):")
        for patch in state.patches:
            click.echo(f"  - {patch.file}: {patch.explanation}")
    if state.status == WorkflowStatus.AWAITING_HUMAN:
        click.echo("\nReview the patches, then run 'issueres approve' or 'issueres reject'.")
    if state.published_url:
        click.echo(f"\nPull request: {state.published_url}")
    if verbose and state.logs:
        click.echo("\nLog:")
        for entry in state.logs:
            click.echo(f"  {entry}")


@cli.command("list-issues")
@click.pass_context
def list_issues(ctx: click.Context) -> None:
    """List open issues and the status of their workflows."""
    settings: IssueResSettings = ctx.obj["settings"]

    async def _list(service: WorkflowService) -> None:
        issues = await service.list_issues()
        if not issues:
            click.echo("No open issues")
            return
        for issue in issues:
            state = await service.get_state(issue.number)
            status = state.status if state else WorkflowStatus.IDLE.value
            click.echo(f"#{issue.number:<6} [{status}] {issue.title}")

    _run_command("list_issues", lambda: _with_service(settings, _list, connect_model=False))


@cli.command()
@click.option("--issue", type=int, required=True, help="Issue number to resolve")
@click.option("--headless", is_flag=True, help="Publish without stopping for review")
@click.pass_context
def start(ctx: click.Context, issue: int, headless: bool) -> None:
    """Start a fresh workflow for an issue."""
    settings: IssueResSettings = ctx.obj["settings"]
    bind_issue_context(settings.repository.owner, settings.repository.name, issue)
    interactive = False if headless else None

    state = _run_command(
        "start",
        lambda: _with_service(settings, lambda s: s.start(issue, interactive=interactive)),
    )
    _echo_state(state)
    if state.status == WorkflowStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--issue", type=int, required=True, help="Issue number")
@click.pass_context
def resume(ctx: click.Context, issue: int) -> None:
    """Resume a workflow paused on a rate limit."""
    settings: IssueResSettings = ctx.obj["settings"]
    bind_issue_context(settings.repository.owner, settings.repository.name, issue)

    state = _run_command("resume", lambda: _with_service(settings, lambda s: s.resume(issue)))
    _echo_state(state)
    if state.status == WorkflowStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--issue", type=int, required=True, help="Issue number")
@click.pass_context
def approve(ctx: click.Context, issue: int) -> None:
    """Approve the generated patches and open a pull request."""
    settings: IssueResSettings = ctx.obj["settings"]
    bind_issue_context(settings.repository.owner, settings.repository.name, issue)

    state = _run_command(
        "approve",
        lambda: _with_service(settings, lambda s: s.decide(issue, approved=True), connect_model=False),
    )
    _echo_state(state)
    if state.status == WorkflowStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--issue", type=int, required=True, help="Issue number")
@click.option("--feedback", required=True, help="Requested changes")
@click.pass_context
def reject(ctx: click.Context, issue: int, feedback: str) -> None:
    """Reject the generated patches with feedback."""
    settings: IssueResSettings = ctx.obj["settings"]
    bind_issue_context(settings.repository.owner, settings.repository.name, issue)

    state = _run_command(
        "reject",
        lambda: _with_service(
            settings, lambda s: s.decide(issue, approved=False, feedback=feedback), connect_model=False
        ),
    )
    _echo_state(state)


@cli.command()
@click.option("--issue", type=int, required=True, help="Issue number")
@click.option("--verbose", "-v", is_flag=True, help="Show the workflow log")
@click.pass_context
def show(ctx: click.Context, issue: int, verbose: bool) -> None:
    """Show the latest snapshot of a workflow."""
    settings: IssueResSettings = ctx.obj["settings"]
    store = SnapshotStore(settings.snapshot_dir)
    key = snapshot_key(settings, issue)

    state = _run_command("show", lambda: store.load_snapshot(key))
    if state is None:
        click.echo(f"No workflow found for issue #{issue}")
        sys.exit(1)
    _echo_state(state, verbose=verbose)


@cli.command("list-workflows")
@click.option("--limit", type=click.IntRange(1, 100), default=20, help="Maximum workflows to list")
@click.pass_context
def list_workflows(ctx: click.Context, limit: int) -> None:
    """List the most recently updated workflows."""
    settings: IssueResSettings = ctx.obj["settings"]
    store = SnapshotStore(settings.snapshot_dir)

    states = _run_command("list_workflows", lambda: store.list_snapshots(limit=limit))
    if not states:
        click.echo("No workflows found")
        return
    for state in states:
        number = state.issue.number if state.issue else "?"
        title = state.issue.title if state.issue else ""
        click.echo(f"#{number:<6} [{state.status}] {title}")


@cli.command()
@click.option(
    "--event-path",
    default=lambda: os.environ.get("GITHUB_EVENT_PATH", ""),
    help="Path to the GitHub event payload (defaults to $GITHUB_EVENT_PATH)",
)
def action(event_path: str) -> None:
    """Resolve the issue of a GitHub Actions event without review."""
    try:
        settings = IssueResSettings.from_environment()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if not event_path:
        click.echo("Error: GITHUB_EVENT_PATH is not set", err=True)
        sys.exit(1)

    try:
        payload = json.loads(Path(event_path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"Error: Cannot read event payload {event_path}: {e}", err=True)
        sys.exit(1)

    issue = issue_from_event(payload)
    if issue is None:
        click.echo("No issue found in event data. Skipping.")
        return

    repo = settings.repository
    click.echo(f"Starting issueres action for {repo.full_name}, issue #{issue.number}")
    bind_issue_context(repo.owner, repo.name, issue.number)

    state = _run_command(
        "action",
        lambda: _with_service(
            settings, lambda s: s.start(issue.number, issue=issue, interactive=False)
        ),
    )
    _echo_state(state, verbose=True)
    if state.status != WorkflowStatus.COMPLETED:
        sys.exit(1)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8000, help="Port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP API server."""
    import uvicorn

    from issueres.server import create_app

    settings: IssueResSettings = ctx.obj["settings"]
    app = create_app(_create_service(settings), connect=True)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
