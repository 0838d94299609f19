"""Status rules for review sessions and per-file review progress.

Transitions are caller-driven and unrestricted in both state machines: any
session status may follow any other, and likewise for file status. What
varies is which activity entry a transition produces.
"""

from __future__ import annotations

from local_review.models import ActivityAction, FileStatus, SessionStatus


def session_status_action(target: SessionStatus) -> ActivityAction:
    """Activity recorded when a session's status is set to *target*."""
    if target == SessionStatus.COMPLETED:
        return ActivityAction.SESSION_COMPLETED
    return ActivityAction.STATUS_CHANGED


def file_status_action(target: FileStatus) -> ActivityAction | None:
    """Activity recorded when a file's status is set, or None when nothing is logged."""
    if target == FileStatus.REVIEWED:
        return ActivityAction.FILE_REVIEWED
    return None


def can_complete(files_total: int, files_reviewed: int) -> bool:
    """Completion is offered once every file in a non-empty diff is reviewed."""
    return files_total > 0 and files_reviewed >= files_total
