import argparse
import json
import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .client import (
    BULK_ACTIONS,
    CONTAINER_ACTIONS,
    bulk_action,
    container_action,
    get_commit,
    get_incoming,
    get_status,
    git_fetch,
    git_pull,
)


def get_server_url() -> str:
    """
    Get the Deckhand server URL from environment variable or use default.

    Environment variables:
    - DECKHAND_SERVER_URL: Custom server URL
    """
    return os.environ.get("DECKHAND_SERVER_URL", "http://localhost:3000")


def get_api_token(cli_arg: str | None = None) -> str | None:
    """
    Get API token from multiple sources in priority order.

    Priority (highest to lowest):
    1. Command line argument (--token)
    2. Environment variable (DECKHAND_API_TOKEN)
    3. Config file (~/.deckhand/config)

    Config file format (~/.deckhand/config):
        token=dh_abc123...
    """
    if cli_arg:
        return cli_arg

    env_token = os.environ.get("DECKHAND_API_TOKEN")
    if env_token:
        return env_token

    config_path = Path.home() / ".deckhand" / "config"
    if config_path.exists():
        try:
            for line in config_path.read_text().splitlines():
                line = line.strip()
                if line.startswith("token="):
                    return line[6:].strip()
        except OSError:
            pass  # Unreadable config file is the same as no config file

    return None


def format_time(timestamp: int | None) -> str:
    """Format a unix timestamp for display."""
    if timestamp is None:
        return "N/A"
    return datetime.fromtimestamp(timestamp, UTC).strftime("%Y-%m-%d %H:%M:%S")


def print_error(error: dict[str, Any] | None) -> None:
    if not error:
        return
    print(f"Error ({error.get('kind')}): {error.get('detail')}", file=sys.stderr)
    if error.get("output"):
        print(error["output"], file=sys.stderr)


def print_status(snapshot: dict[str, Any]) -> None:
    repo = snapshot.get("repository")
    if repo:
        marker = "updates available" if repo["updates_available"] else "up to date"
        print(f"Branch:  {repo['current_branch']}")
        print(f"Local:   {repo['local_short']}")
        print(f"Remote:  {repo['remote_short']}  ({marker})")
    else:
        print("Repository: unavailable")
        print_error(snapshot.get("repository_error"))

    print()
    containers = snapshot.get("containers") or []
    if snapshot.get("containers_error"):
        print("Containers: unavailable")
        print_error(snapshot["containers_error"])
    elif not containers:
        print("No containers found.")
    else:
        print(f"{'NAME':<24} {'STATE':<12} {'ID':<14} {'CREATED':<20} {'IMAGE'}")
        print("-" * 100)
        for c in containers:
            print(
                f"{c['name']:<24} {c['state']:<12} {c['short_id']:<14} "
                f"{format_time(c.get('created_at_unix')):<20} {c['image']}"
            )


def print_commit(commit: dict[str, Any]) -> None:
    print(f"commit {commit['hash']}")
    print(f"Author: {commit['author_name']} <{commit['author_email']}>")
    print(f"Date:   {format_time(commit['timestamp_unix'])}")
    print()
    print(f"    {commit['subject']}")
    if commit.get("body"):
        print()
        for line in commit["body"].splitlines():
            print(f"    {line}")


def report_result(result: dict[str, Any]) -> int:
    """Print an OperationResult/PullOutcome and return the exit code."""
    output = result.get("output") or result.get("raw_output")
    if output:
        print(output)
    if result.get("success"):
        if "files_changed" in result:
            if result.get("already_up_to_date"):
                print("Already up to date.")
            else:
                print(f"Fast-forwarded: {result['files_changed']} files changed")
        return 0

    if result.get("container"):
        print(f"Failed on container: {result['container']}", file=sys.stderr)
    if result.get("completed"):
        print(f"Completed before failure: {', '.join(result['completed'])}", file=sys.stderr)
    print_error(result.get("error"))
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deckhand CLI")
    parser.add_argument(
        "--token",
        dest="token",
        help="API token (can also use DECKHAND_API_TOKEN env var or ~/.deckhand/config)",
    )
    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser("status", help="Show git and container status")
    status_parser.add_argument(
        "--json", dest="json_mode", action="store_true", help="Output in JSON format"
    )

    subparsers.add_parser("fetch", help="Fetch the tracked branch")
    subparsers.add_parser("pull", help="Fast-forward pull the tracked branch")

    show_parser = subparsers.add_parser("show", help="Show one commit")
    show_parser.add_argument("ref", help="Commit hash or HEAD")

    incoming_parser = subparsers.add_parser("incoming", help="List commits not yet pulled")
    incoming_parser.add_argument("--limit", type=int, default=20)

    for action in CONTAINER_ACTIONS:
        action_parser = subparsers.add_parser(action, help=f"{action.capitalize()} one container")
        action_parser.add_argument("name", help="Container name")

    for action in BULK_ACTIONS:
        subparsers.add_parser(action, help=f"Run {action} over every managed container")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point for the Deckhand CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    server_url = get_server_url()
    api_token = get_api_token(args.token)

    try:
        if args.command == "status":
            snapshot = get_status(server_url=server_url, api_token=api_token)
            if args.json_mode:
                print(json.dumps(snapshot, indent=2))
            else:
                print_status(snapshot)
            sys.exit(0)

        if args.command == "fetch":
            sys.exit(report_result(git_fetch(server_url=server_url, api_token=api_token)))

        if args.command == "pull":
            sys.exit(report_result(git_pull(server_url=server_url, api_token=api_token)))

        if args.command == "show":
            print_commit(get_commit(args.ref, server_url=server_url, api_token=api_token))
            sys.exit(0)

        if args.command == "incoming":
            commits = get_incoming(args.limit, server_url=server_url, api_token=api_token)
            if not commits:
                print("No incoming commits.")
            for commit in commits:
                print(f"{commit['short_hash']}  {commit['author_name']:<20} {commit['subject']}")
            sys.exit(0)

        if args.command in CONTAINER_ACTIONS:
            result = container_action(
                args.name, args.command, server_url=server_url, api_token=api_token
            )
            sys.exit(report_result(result))

        if args.command in BULK_ACTIONS:
            result = bulk_action(args.command, server_url=server_url, api_token=api_token)
            sys.exit(report_result(result))

    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        error_msg = str(e).lower()
        if "401" in error_msg or "403" in error_msg:
            print("\nAuthentication required. Please provide an API token using one of:", file=sys.stderr)
            print("  1. Command line flag: --token <token>", file=sys.stderr)
            print("  2. Environment variable: DECKHAND_API_TOKEN=<token>", file=sys.stderr)
            print("  3. Config file: ~/.deckhand/config (format: token=<token>)", file=sys.stderr)
        sys.exit(1)

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
