from datetime import datetime
from typing import Dict, List, Optional

from campus_platform.milestones.milestone_models import ChainStatus, MilestoneStatus, ProgressStatus


def is_publicly_visible(chain: dict, milestone: dict) -> bool:
    """Non-staff only ever see published milestones of a published chain"""
    return (
        chain.get("status") == ChainStatus.PUBLISHED.value
        and milestone.get("status") == MilestoneStatus.PUBLISHED.value
    )


def is_locked(milestone: dict, progress: Optional[dict], now: datetime) -> bool:
    completed = bool(progress) and progress.get("status") == ProgressStatus.COMPLETED.value
    return now < milestone["start_date"] and not completed


def strip_answers(milestone: dict, hide_questions: bool = False) -> dict:
    """Copy of a milestone safe to show a student"""
    safe = dict(milestone)
    if hide_questions:
        safe["questions"] = []
        safe["question_count"] = len(milestone.get("questions", []))
    else:
        safe["questions"] = [
            {k: v for k, v in q.items() if k != "correct_answer"}
            for q in milestone.get("questions", [])
        ]
    return safe


def student_milestone_view(
    milestones: List[dict],
    progress_by_milestone: Dict[str, dict],
    now: datetime
) -> List[dict]:
    """
    Drip-feed list for a student: every past milestone, the current ones,
    and the first upcoming one (locked). Anything after that is hidden.

    `milestones` must already be published and sorted by order.
    """
    visible = []

    for milestone in milestones:
        progress = progress_by_milestone.get(milestone["milestone_id"])
        is_past = milestone["end_date"] < now
        is_current = milestone["start_date"] <= now <= milestone["end_date"]
        completed = bool(progress) and progress.get("status") == ProgressStatus.COMPLETED.value
        locked = is_locked(milestone, progress, now)

        item = strip_answers(milestone, hide_questions=locked)
        item.update({
            "is_past": is_past,
            "is_current": is_current,
            "is_locked": locked,
            "student_progress": progress,
        })
        visible.append(item)

        if not is_past and not is_current and not completed:
            break

    return visible
