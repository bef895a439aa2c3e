#!/usr/bin/env python3
"""Session Tagger - AI tag suggestions for coding sessions.

Entry point for the CLI application.
"""

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

console = Console()


def _open_database(args):
    from .store import SessionTagDatabase

    db = SessionTagDatabase(Path(args.db) if args.db else None)
    db.initialize()
    return db


def _suggestion_table(title: str, rows, show_session: bool = False) -> Table:
    table = Table(title=title)
    if show_session:
        table.add_column("ID", justify="right")
        table.add_column("Session")
    table.add_column("Tag", style="bold")
    table.add_column("Confidence", justify="right")
    table.add_column("Category")
    table.add_column("Reasoning")

    for row in rows:
        name = getattr(row, "tag_name", None) or getattr(row, "name", "")
        cells = [name, f"{row.confidence:.2f}", row.category, row.reasoning]
        if show_session:
            cells = [str(row.id), row.session_id] + cells
        table.add_row(*cells)
    return table


def cmd_estimate(args):
    """Show projected cost and time for scanning sessions."""
    from .estimate import estimate_scan_cost

    count = args.count
    if count is None:
        db = _open_database(args)
        count = len(db.get_pending_sessions())
        db.close()

    estimate = estimate_scan_cost(count, args.avg_tokens)

    table = Table(title="Scan Estimate", show_header=False)
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Sessions", str(estimate.total_sessions))
    table.add_row("Tokens", f"{estimate.estimated_tokens:,}")
    table.add_row("Cost", f"${estimate.estimated_cost:.2f}")
    table.add_row("Time", f"~{estimate.estimated_time_minutes} min")
    console.print(table)
    return 0


def cmd_suggest(args):
    """Generate suggestions for a single session."""
    from .client import TagSuggestionClient
    from .config import TaggerSettings
    from .context import ContextGatherer, render_context
    from .errors import TagSuggestionError
    from .policy import AutoAcceptListener

    db = _open_database(args)
    try:
        gatherer = ContextGatherer(db)
        context = gatherer.gather_quick(args.session_id) if args.quick else gatherer.gather_full(args.session_id)
        if context is None:
            console.print(f"[red]Session not found: {args.session_id}[/red]")
            return 1

        client = TagSuggestionClient()
        try:
            results = client.suggest(render_context(context), db.get_tag_names())
        except TagSuggestionError as e:
            console.print(f"[red]Tag suggestion failed ({e.error_type}):[/red] {e}")
            return 1

        if not results:
            console.print("No suggestions.")
            return 0

        console.print(_suggestion_table(f"Suggestions for {args.session_id}", results))

        if args.save:
            saved = db.save_suggestions(args.session_id, results)
            db.update_scan_status(args.session_id, "completed")
            accepted = AutoAcceptListener(db, TaggerSettings.load(db))(args.session_id, saved)
            console.print(f"✓ Saved {len(saved)} suggestions ({accepted} auto-accepted)")
        return 0
    finally:
        db.close()


def cmd_scan(args):
    """Scan all pending sessions in the background worker."""
    from .client import TagSuggestionClient
    from .config import TaggerSettings, get_api_key
    from .context import ContextGatherer
    from .estimate import estimate_scan_cost
    from .policy import AutoAcceptListener
    from .scheduler import SuggestionScheduler

    if not get_api_key():
        console.print("[red]❌ Anthropic API key not configured.[/red]")
        console.print("   Set ANTHROPIC_API_KEY environment variable to enable suggestions.")
        return 1

    db = _open_database(args)
    settings = TaggerSettings.load(db)
    if args.include_agents:
        settings.scan_agent_sessions = True

    scheduler = SuggestionScheduler(ContextGatherer(db), TagSuggestionClient(), db, settings)
    scheduler.on("complete", AutoAcceptListener(db, settings))

    failures = []

    def on_complete(session_id, suggestions):
        names = ", ".join(s.tag_name for s in suggestions) or "-"
        console.print(f"  {session_id}: {names}")

    def on_error(error, session_id):
        failures.append(session_id)
        if session_id is None:
            console.print(f"[red]Scan paused: {error}[/red]")

    scheduler.on("complete", on_complete)
    scheduler.on("error", on_error)

    try:
        if args.auto:
            if not scheduler.auto_start():
                console.print("Auto-suggest is disabled (set auto_suggest_enabled to enable).")
                return 0
        else:
            queued = scheduler.queue_all_pending(args.limit)
            if queued == 0:
                console.print("✓ No pending sessions to scan.")
                return 0

            estimate = estimate_scan_cost(queued)
            console.print(
                f"Scanning {queued} sessions "
                f"(~${estimate.estimated_cost:.2f}, ~{estimate.estimated_time_minutes} min)"
            )
            scheduler.start()
        scheduler.wait_idle()
        status = scheduler.get_status()
    finally:
        if scheduler.is_running:
            scheduler.stop()
        db.close()

    console.print()
    console.print(f"✓ Scanned {status.scanned_sessions} sessions")
    if status.pending_sessions:
        console.print(f"  {status.pending_sessions} sessions left queued")
    if failures:
        console.print(f"  [yellow]{len(failures)} failures[/yellow] (last: {status.last_error})")
    return 1 if status.breaker_open else 0


def cmd_pending(args):
    """List suggestions awaiting review."""
    db = _open_database(args)
    suggestions = db.get_pending_suggestions(args.limit)
    db.close()

    if not suggestions:
        console.print("No pending suggestions.")
        return 0

    console.print(_suggestion_table("Pending Suggestions", suggestions, show_session=True))
    return 0


def cmd_review(args):
    """Accept, reject or dismiss pending suggestions."""
    db = _open_database(args)
    try:
        if args.accept_all or args.dismiss_all:
            if not args.session_id:
                console.print("[red]A session ID is required with --accept-all/--dismiss-all[/red]")
                return 1
            if args.accept_all:
                count = db.accept_all_suggestions(args.session_id)
                console.print(f"✓ Accepted {count} suggestions for {args.session_id}")
            else:
                count = db.dismiss_all_suggestions(args.session_id)
                console.print(f"✓ Dismissed {count} suggestions for {args.session_id}")
            return 0

        for suggestion_id, status in (
            (args.accept, "accepted"),
            (args.reject, "rejected"),
            (args.dismiss, "dismissed"),
        ):
            if suggestion_id is None:
                continue
            suggestion = db.get_suggestion(suggestion_id)
            if suggestion is None:
                console.print(f"[red]Suggestion not found: {suggestion_id}[/red]")
                return 1
            if suggestion.status != "pending":
                console.print(f"[yellow]Suggestion {suggestion_id} already {suggestion.status}[/yellow]")
                return 1
            if status == "accepted":
                db.accept_suggestion(suggestion_id)
            else:
                db.set_suggestion_status(suggestion_id, status)
            console.print(f"✓ {suggestion.tag_name} {status} for {suggestion.session_id}")
            return 0

        if args.session_id:
            rows = [s for s in db.get_session_suggestions(args.session_id) if s.status == "pending"]
        else:
            rows = db.get_pending_suggestions()
        if not rows:
            console.print("No pending suggestions.")
            return 0
        console.print(_suggestion_table("Pending Suggestions", rows, show_session=True))
        return 0
    finally:
        db.close()


def cmd_status(args):
    """Show how many sessions have been scanned."""
    db = _open_database(args)
    try:
        if args.skip_older_than is not None:
            skipped = db.skip_old_sessions(args.skip_older_than)
            console.print(f"✓ Skipped {skipped} sessions older than {args.skip_older_than} days")

        counts = db.get_scan_counts()
        rescan = db.get_sessions_needing_rescan()
    finally:
        db.close()

    table = Table(title="Scan Status", show_header=False)
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Scanned", str(counts["scanned"]))
    table.add_row("Pending", str(counts["pending"]))
    table.add_row("Total", str(counts["total"]))
    table.add_row("Changed since scan", str(len(rescan)))
    console.print(table)

    for session_id in rescan:
        console.print(f"  {session_id}")
    return 0


def cmd_check_key(args):
    """Check that the configured API key is accepted."""
    from .client import TagSuggestionClient
    from .config import get_api_key

    if not get_api_key():
        console.print("[red]✗ ANTHROPIC_API_KEY is not set[/red]")
        return 1

    if TagSuggestionClient().validate_api_key():
        console.print("[green]✓ API key is valid[/green]")
        return 0

    console.print("[red]✗ API key was rejected[/red]")
    return 1


def main(argv=None):
    """Main entry point for session-tagger CLI."""
    parser = argparse.ArgumentParser(
        description="Suggest tags for AI coding sessions",
        prog="session-tagger",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--db", help="Path to the session database")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate scan cost")
    estimate_parser.add_argument("--count", "-n", type=int, help="Session count (default: pending sessions)")
    estimate_parser.add_argument("--avg-tokens", type=int, help="Average input tokens per session")

    suggest_parser = subparsers.add_parser("suggest", help="Suggest tags for one session")
    suggest_parser.add_argument("session_id", help="Session ID")
    suggest_parser.add_argument("--quick", action="store_true", help="Use quick context")
    suggest_parser.add_argument("--save", action="store_true", help="Store suggestions")

    scan_parser = subparsers.add_parser("scan", help="Scan all pending sessions")
    scan_parser.add_argument("--limit", "-l", type=int, help="Max sessions to queue")
    scan_parser.add_argument("--include-agents", action="store_true", help="Also scan agent- sessions")
    scan_parser.add_argument("--auto", action="store_true", help="Scan recent sessions only if auto-suggest is enabled")

    pending_parser = subparsers.add_parser("pending", help="List suggestions awaiting review")
    pending_parser.add_argument("--limit", "-l", type=int, default=50, help="Max suggestions to show")

    review_parser = subparsers.add_parser("review", help="Accept, reject or dismiss suggestions")
    review_parser.add_argument("session_id", nargs="?", help="Limit to one session")
    review_actions = review_parser.add_mutually_exclusive_group()
    review_actions.add_argument("--accept", type=int, metavar="ID", help="Accept a suggestion and apply its tag")
    review_actions.add_argument("--reject", type=int, metavar="ID", help="Reject a suggestion")
    review_actions.add_argument("--dismiss", type=int, metavar="ID", help="Dismiss a suggestion")
    review_actions.add_argument("--accept-all", action="store_true", help="Accept all pending suggestions for the session")
    review_actions.add_argument("--dismiss-all", action="store_true", help="Dismiss all pending suggestions for the session")

    status_parser = subparsers.add_parser("status", help="Show scan progress across sessions")
    status_parser.add_argument("--skip-older-than", type=int, metavar="DAYS", help="Skip unscanned sessions older than DAYS")

    subparsers.add_parser("check-key", help="Validate the Anthropic API key")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version:
        from . import __version__
        console.print(f"session-tagger {__version__}")
        return 0

    commands = {
        "estimate": cmd_estimate,
        "suggest": cmd_suggest,
        "scan": cmd_scan,
        "pending": cmd_pending,
        "review": cmd_review,
        "status": cmd_status,
        "check-key": cmd_check_key,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 0
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
