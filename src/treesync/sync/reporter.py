"""Sync outcome formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- post-sync summary, or the plan of a dry run.
- ``format_clash`` -- one line describing an unresolved clash.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ClashResolution, SyncOutcome

from .models import OpKind

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_clash(resolution: ClashResolution) -> str:
    """Describe one unresolved clash for the user."""
    clash = resolution.clash
    line = (
        f"  {clash.path} (local {clash.local_state.value}, "
        f"remote {clash.remote_kind.value})"
    )
    if resolution.quarantine_path:
        kind = f"{resolution.content_kind} " if resolution.content_kind else ""
        line += f": remote {kind}version saved to {resolution.quarantine_path}"
    elif resolution.reason:
        line += f": {resolution.reason}"
    return line


def format_sync_report(outcome: SyncOutcome) -> str:
    """Format a sync outcome as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        outcome: The outcome of a sync run.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report for '{outcome.profile_name}'"
    if outcome.dry_run:
        header += " (DRY RUN -- no changes made)"
    lines.append(header)
    lines.append(f"Started: {outcome.started_at}")
    if outcome.completed_at:
        lines.append(f"Completed: {outcome.completed_at}")
    lines.append("")

    if not outcome.success and outcome.error is not None:
        lines.append(f"Sync failed ({outcome.error.error_type.value}).")
        lines.append(f"  {outcome.error.detail_message}")
        if outcome.error.source:
            lines.append(f"  During: {outcome.error.source}")
        lines.append(f"  {outcome.error.user_message}")
        return "\n".join(lines).rstrip()

    if not outcome.has_operations and not outcome.unresolved_clashes:
        lines.append("Everything up to date.")
        return "\n".join(lines).rstrip()

    lines.append(
        f"{len(outcome.pushed)} pushed, {len(outcome.pulled)} pulled, "
        f"{len(outcome.quarantined)} quarantined, "
        f"{len(outcome.unresolved_clashes)} unresolved"
    )
    lines.append("")

    if outcome.pushed:
        lines.append("Pushed to remote:")
        for op in outcome.pushed:
            verb = "deleted" if op.op == OpKind.DELETE else "updated"
            lines.append(f"  {op.path} ({verb})")
        lines.append("")

    if outcome.pulled:
        lines.append("Pulled from remote:")
        for op in outcome.pulled:
            verb = "deleted" if op.op == OpKind.DELETE else "updated"
            lines.append(f"  {op.path} ({verb})")
        lines.append("")

    if outcome.unresolved_clashes:
        lines.append("Unresolved clashes (local files kept):")
        for res in outcome.unresolved_clashes:
            lines.append(format_clash(res))
        lines.append("")

    if outcome.held_deletions:
        lines.append("Deletions not pushed (file may still exist locally):")
        for path in outcome.held_deletions:
            lines.append(f"  {path}")
        lines.append("")

    if outcome.revision:
        lines.append(f"Remote revision: {outcome.revision}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(outcome: SyncOutcome) -> dict:
    """Convert a sync outcome to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        outcome: The sync outcome.

    Returns:
        Dict with profile info, counts, and per-operation details.
    """
    data: dict = {
        "profile_name": outcome.profile_name,
        "dry_run": outcome.dry_run,
        "success": outcome.success,
        "phase": outcome.phase.value,
        "revision": outcome.revision,
        "started_at": outcome.started_at,
        "completed_at": outcome.completed_at,
        "counts": {
            "pushed": len(outcome.pushed),
            "pulled": len(outcome.pulled),
            "quarantined": len(outcome.quarantined),
            "unresolved": len(outcome.unresolved_clashes),
            "held_deletions": len(outcome.held_deletions),
        },
        "remote_ops": [
            {"path": op.path, "op": op.op.value} for op in outcome.remote_ops
        ],
        "local_ops": [
            {"path": op.path, "op": op.op.value} for op in outcome.local_ops
        ],
        "unresolved_clashes": [
            {
                "path": res.path,
                "local_state": res.clash.local_state.value,
                "remote_kind": res.clash.remote_kind.value,
                "action": res.action.value,
                "quarantine_path": res.quarantine_path,
                "reason": res.reason,
            }
            for res in outcome.unresolved_clashes
        ],
        "held_deletions": list(outcome.held_deletions),
    }
    if outcome.error is not None:
        data["error"] = outcome.error.model_dump(mode="json")
    return data
