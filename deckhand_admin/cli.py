"""
Admin CLI for operating Deckhand locally.

Runs the controllers directly against the configured repository and
container runtime, without going through the HTTP server. Also
generates API tokens for the server.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from deckhand_common.config import DeckhandConfig
from deckhand_common.errors import DeckhandError
from deckhand_common.models import OperationResult, PullOutcome
from deckhand_controller.services import Services, create_services
from deckhand_server.auth import generate_api_token, hash_api_token

T = TypeVar("T")


def get_services() -> Services:
    """Build services from the environment configuration."""
    config = DeckhandConfig.from_env()
    config.validate()
    return create_services(config)


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def with_services(func: Callable[[Services], Awaitable[T]]) -> T:
    """Build services, run one coroutine against them, and exit 1 on errors."""
    try:
        services = get_services()
    except DeckhandError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def run() -> T:
        try:
            return await func(services)
        finally:
            services.close()

    try:
        return run_async(run())
    except DeckhandError as e:
        click.echo(f"Error ({e.kind}): {e.detail}", err=True)
        sys.exit(1)


def echo_result(result: OperationResult | PullOutcome) -> None:
    """Print a mutation result and exit 1 if it failed."""
    output = result.output if isinstance(result, OperationResult) else result.raw_output
    if output:
        click.echo(output)

    if result.success:
        if isinstance(result, PullOutcome):
            if result.already_up_to_date:
                click.echo("✓ Already up to date")
            else:
                click.echo(f"✓ Fast-forwarded: {result.files_changed} files changed")
        else:
            click.echo("✓ Done")
        return

    if isinstance(result, OperationResult):
        if result.container:
            click.echo(f"✗ Failed on container: {result.container}", err=True)
        if result.completed:
            click.echo(f"  Completed before failure: {', '.join(result.completed)}", err=True)
    if result.error:
        click.echo(f"✗ {result.error.kind}: {result.error.detail}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Deckhand Admin - operate the managed repository and containers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.group()
def token():
    """Manage API tokens."""
    pass


@cli.group()
def git():
    """Operate on the managed repository."""
    pass


@cli.group()
def containers():
    """Operate on the managed containers."""
    pass


# ============================================================================
# Token Commands
# ============================================================================


@token.command("generate")
def token_generate():
    """Generate a new API token and the hash to configure on the server."""
    plaintext = generate_api_token()
    click.echo("✓ API token generated")
    click.echo(f"  Token: {plaintext}")
    click.echo(f"  Hash:  {hash_api_token(plaintext)}")
    click.echo()
    click.echo("Set DECKHAND_API_TOKEN_HASH to the hash on the server.")
    click.echo("Save the token now; it cannot be recovered from the hash.")


# ============================================================================
# Validation and Status
# ============================================================================


@cli.command("check")
def check():
    """Validate configuration, repository and container runtime."""

    async def validate(services: Services) -> list[str]:
        await services.git.validate_repository()
        return await services.containers.validate()

    missing = with_services(validate)
    click.echo("✓ Repository and container runtime are valid")
    if missing:
        click.echo(f"  Not created yet: {', '.join(missing)}")


@cli.command("status")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def status(json_output: bool):
    """Show git and container status."""
    snapshot = with_services(lambda s: s.status.get_snapshot())

    if json_output:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    if snapshot.repository:
        repo = snapshot.repository
        marker = "updates available" if repo.updates_available else "up to date"
        click.echo(f"\nBranch:  {repo.current_branch}")
        click.echo(f"Local:   {repo.local_commit[:8]}")
        click.echo(f"Remote:  {repo.remote_commit[:8]}  ({marker})")
    elif snapshot.repository_error:
        click.echo(f"\nRepository unavailable: {snapshot.repository_error.detail}")

    if snapshot.containers_error:
        click.echo(f"\nContainers unavailable: {snapshot.containers_error.detail}")
        return

    click.echo(f"\n{'Name':<24} {'State':<12} {'Image':<40}")
    click.echo("-" * 80)
    for record in snapshot.containers:
        click.echo(f"{record.name:<24} {record.state.value:<12} {record.image:<40}")
    click.echo()


# ============================================================================
# Git Commands
# ============================================================================


@git.command("fetch")
def git_fetch():
    """Fetch the tracked branch."""
    echo_result(with_services(lambda s: s.git.fetch()))


@git.command("pull")
def git_pull():
    """Fast-forward pull the tracked branch."""
    echo_result(with_services(lambda s: s.git.pull()))


@git.command("show")
@click.argument("ref")
def git_show(ref: str):
    """Show one commit."""
    commit = with_services(lambda s: s.git.get_commit_info(ref))
    click.echo(f"\ncommit {commit.hash}")
    click.echo(f"Author: {commit.author_name} <{commit.author_email}>")
    click.echo(f"Date:   {commit.timestamp_unix}")
    click.echo(f"\n    {commit.subject}")
    if commit.body:
        click.echo()
        for line in commit.body.splitlines():
            click.echo(f"    {line}")
    click.echo()


@git.command("incoming")
@click.option("--limit", default=20, show_default=True, help="Maximum commits to list")
def git_incoming(limit: int):
    """List commits on the remote branch that are not pulled yet."""
    commits = with_services(lambda s: s.git.get_incoming_commits(limit))
    if not commits:
        click.echo("No incoming commits.")
        return
    for commit in commits:
        click.echo(f"{commit.short_hash}  {commit.author_name:<20} {commit.subject}")


# ============================================================================
# Container Commands
# ============================================================================


@containers.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def containers_list(json_output: bool):
    """List managed containers (missing ones are omitted)."""
    records = with_services(lambda s: s.containers.get_all_statuses())

    if json_output:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return

    if not records:
        click.echo("No containers found.")
        return

    for record in records:
        click.echo(f"{record.name:<24} {record.state.value:<12} {record.id[:12]}")


def _single_command(action: str) -> Callable[..., Any]:
    @click.argument("name")
    def command(name: str):
        echo_result(with_services(lambda s: getattr(s.containers, action)(name)))

    command.__doc__ = f"{action.replace('_', ' ').capitalize()} one container."
    return command


def _bulk_command(action: str) -> Callable[..., Any]:
    def command():
        echo_result(with_services(lambda s: getattr(s.containers, action)()))

    command.__doc__ = f"{action.replace('_', ' ').capitalize()} (stops at the first failure)."
    return command


for _name, _method in [
    ("start", "start"),
    ("stop", "stop"),
    ("restart", "restart"),
    ("update", "update_container"),
]:
    containers.command(_name)(_single_command(_method))

for _name, _method in [
    ("start-all", "start_all"),
    ("stop-all", "stop_all"),
    ("restart-all", "restart_all"),
    ("update-all", "update_all"),
]:
    containers.command(_name)(_bulk_command(_method))


if __name__ == "__main__":
    cli()
