"""Operation summary formatting.

Provides human-readable and machine-readable output for every import,
export and sync:

- ``format_summary`` -- full post-operation summary.
- ``format_dry_run_preview`` -- what a dry run would have touched.
- ``summary_to_json`` -- structured dict for JSON output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import OperationSummary

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_summary(summary: OperationSummary) -> str:
    """Format an operation summary as human-readable text.

    Sections are only included when they contain at least one entry.
    Skipped files are summarised by count only.

    Args:
        summary: The completed operation summary.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"{summary.operation.value.capitalize()} report ({summary.format})"
    if summary.dry_run:
        header += " (DRY RUN)"
    if summary.aborted:
        header += " (ABORTED)"
    lines.append(header)
    lines.append(f"Started: {summary.started_at}")
    if summary.completed_at:
        lines.append(f"Completed: {summary.completed_at} ({summary.duration:.2f}s)")
    if summary.output_path:
        lines.append(f"Output: {summary.output_path}")
    lines.append("")

    lines.append(
        f"Processed {summary.processed_files}/{summary.total_files} files: "
        f"{summary.successful_files} succeeded, {summary.failed_files} failed, "
        f"{summary.skipped_files} skipped"
    )
    lines.append("")

    created = [r for r in summary.results if r.success and r.created]
    if created:
        lines.append("Created:")
        for r in created:
            target = r.attachment_id or r.note_id or r.output_path or ""
            lines.append(f"  {r.path} -> {target}")
        lines.append("")

    updated = [
        r for r in summary.results if r.success and not r.created and not r.skipped
    ]
    if updated and not summary.dry_run:
        lines.append("Updated:")
        for r in updated:
            lines.append(f"  {r.path} -> {r.note_id or r.output_path or ''}")
        lines.append("")

    if summary.git is not None:
        git = summary.git
        lines.append(f"Git: {git.repository} on {git.branch}")
        if git.pulled:
            lines.append("  pulled from remote")
        if git.commit_hash:
            lines.append(f"  commit {git.commit_hash}")
        if git.pushed:
            lines.append("  pushed to remote")
        lines.append(
            f"  {len(git.imported)} imported, {len(git.exported)} exported"
        )
        lines.append("")
        if git.conflicts:
            lines.append("Conflicts:")
            for path in git.conflicts:
                lines.append(f"  {path}: changed in both directions")
            lines.append("")

    if summary.errors:
        lines.append("Errors:")
        for e in summary.errors:
            where = f"{e.path}: " if e.path else ""
            lines.append(f"  [{e.code}] {where}{e.message}")
        lines.append("")

    if summary.warnings:
        lines.append("Warnings:")
        for w in summary.warnings:
            where = f"{w.path}: " if w.path else ""
            lines.append(f"  [{w.code}] {where}{w.message}")
        lines.append("")

    if summary.skipped_files > 0:
        lines.append(f"Skipped: {summary.skipped_files} files")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(summary: OperationSummary) -> str:
    """List the files a dry run would have written.

    Args:
        summary: A dry-run summary (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Operation: {summary.operation.value} ({summary.format})")
    lines.append("")

    pending = [r for r in summary.results if r.success and not r.skipped]
    if pending:
        verb = summary.operation.value.upper()
        lines.append(f"[{verb}]")
        for r in pending:
            lines.append(f"  {r.path}")
        lines.append("")
    else:
        lines.append("No changes needed.")
        lines.append("")

    if summary.failed:
        lines.append("Unreadable:")
        for r in summary.failed:
            message = r.error.message if r.error else "unknown error"
            lines.append(f"  {r.path}: {message}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def summary_to_json(summary: OperationSummary) -> dict:
    """Convert a summary to a structured dict for JSON serialisation.

    Args:
        summary: The operation summary.

    Returns:
        Dict with operation info, counts, per-file results and messages.
    """
    results_list = []
    for r in summary.results:
        entry: dict = {"path": r.path, "success": r.success}
        if r.note_id:
            entry["note_id"] = r.note_id
        if r.attachment_id:
            entry["attachment_id"] = r.attachment_id
        if r.output_path:
            entry["output_path"] = r.output_path
        if r.skipped:
            entry["skipped"] = True
        if r.reason:
            entry["reason"] = r.reason
        if r.error:
            entry["error"] = r.error.message
        results_list.append(entry)

    data: dict = {
        "operation": summary.operation.value,
        "format": summary.format,
        "operation_id": summary.operation_id,
        "dry_run": summary.dry_run,
        "aborted": summary.aborted,
        "started_at": summary.started_at,
        "completed_at": summary.completed_at,
        "duration": summary.duration,
        "counts": {
            "total": summary.total_files,
            "processed": summary.processed_files,
            "successful": summary.successful_files,
            "failed": summary.failed_files,
            "skipped": summary.skipped_files,
        },
        "size": {
            "total": summary.total_size,
            "processed": summary.processed_size,
        },
        "errors": [e.model_dump() for e in summary.errors],
        "warnings": [w.model_dump() for w in summary.warnings],
        "results": results_list,
    }
    if summary.output_path:
        data["output_path"] = summary.output_path
    if summary.git is not None:
        data["git"] = summary.git.model_dump()
    return data
