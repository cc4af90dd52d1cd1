"""
Output formatting helpers for CLI commands.
"""

from typing import Any

import click

from icontact_sync.sync.planner import WritePlan

# Maximum entries shown per section when listing plan details
DEFAULT_DETAIL_LIMIT = 20


def show_plan_details(
    plan: WritePlan, existing: dict[str, str] | None = None, limit: int = DEFAULT_DETAIL_LIMIT
) -> None:
    """
    Print the contacts a plan would insert or rename.

    Args:
        plan: Write plan to display
        existing: Stored names, used to show "old -> new" for updates
        limit: Maximum entries per section
    """
    existing = existing or {}

    if plan.inserts:
        click.echo(f"\n=== To insert ({len(plan.inserts)}) ===")
        for contact in plan.inserts[:limit]:
            click.echo(f"  + {contact.full_name} ({contact.identity_key})")
        if len(plan.inserts) > limit:
            click.echo(f"  ... and {len(plan.inserts) - limit} more")

    if plan.updates:
        click.echo(f"\n=== To update ({len(plan.updates)}) ===")
        for update in plan.updates[:limit]:
            old_name = existing.get(update.identity_key, "?")
            click.echo(
                f"  ~ {update.identity_key}: {old_name} -> {update.new_full_name}"
            )
        if len(plan.updates) > limit:
            click.echo(f"  ... and {len(plan.updates) - limit} more")


def _status_label(success: Any) -> str:
    if success:
        return click.style("ok", fg="green")
    return click.style("failed", fg="red")


def format_sync_run(run: dict[str, Any]) -> str:
    """One-line description of a recorded sync run."""
    line = (
        f"{run['created_at']}  {_status_label(run['success'])}  "
        f"seen={run['total_seen']} inserted={run['inserted']} "
        f"updated={run['updated']} skipped={run['skipped']}"
    )
    if run.get("error_message"):
        line += f"  error: {run['error_message']}"
    return line


def show_sync_runs(runs: list[dict[str, Any]]) -> None:
    """Print recorded sync runs, newest first."""
    if not runs:
        click.echo("No sync runs recorded yet.")
        return
    for run in runs:
        click.echo(format_sync_run(run))


def show_contacts(contacts: list[dict[str, Any]]) -> None:
    """Print stored contacts as name / phone columns."""
    if not contacts:
        click.echo("No contacts stored.")
        return

    width = max(len(c["full_name"]) for c in contacts)
    for contact in contacts:
        suffix = "  (hidden)" if contact["is_hidden"] else ""
        notes = f"  - {contact['notes']}" if contact["notes"] else ""
        click.echo(
            f"  {contact['full_name']:<{width}}  {contact['identity_key']}{notes}{suffix}"
        )
    click.echo(f"\nTotal: {len(contacts)}")
