from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from campus_platform.milestones.milestone_models import AUTO_GRADED_TYPES

GRADE_BANDS = [(90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D")]


def compute_percentage(score: Optional[float], max_score: Optional[float]) -> Optional[float]:
    """
    score / max_score * 100 rounded to two places.

    A missing or non-positive max_score means the work is ungraded, so the
    percentage stays None.
    """
    if score is None or not max_score or max_score <= 0:
        return None
    return round(score / max_score * 100, 2)


def letter_grade(percentage: Optional[float]) -> Optional[str]:
    if percentage is None:
        return None
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return "F"


def quiz_time_exceeded(started_at: Optional[datetime], duration_minutes: Optional[int], now: datetime) -> bool:
    if not started_at or not duration_minutes:
        return False
    return now - started_at > timedelta(minutes=duration_minutes)


def _normalize(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().lower()


def answers_match(given, expected) -> bool:
    if given is None or expected is None:
        return False
    return _normalize(given) == _normalize(expected)


def grade_answers(questions: List[dict], answers: List[dict]) -> Tuple[List[dict], float, float]:
    """
    Auto-grade objective questions.

    Returns (graded answers in question order, score, max_score) where
    max_score only counts multiple-choice and true/false points. Free-text
    answers are recorded with is_correct/points left as None.
    """
    given: Dict[str, object] = {a["question_id"]: a.get("answer") for a in answers}
    graded = []
    score = 0.0
    max_score = 0.0

    for question in questions:
        qid = question["question_id"]
        answer = given.get(qid)

        if question.get("type") in AUTO_GRADED_TYPES:
            points = float(question.get("points", 1))
            max_score += points
            is_correct = answers_match(answer, question.get("correct_answer"))
            awarded = points if is_correct else 0.0
            score += awarded
            graded.append({"question_id": qid, "answer": answer, "is_correct": is_correct, "points": awarded})
        else:
            graded.append({"question_id": qid, "answer": answer, "is_correct": None, "points": None})

    return graded, score, max_score
