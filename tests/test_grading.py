from datetime import datetime, timedelta

import pytest

from campus_platform.milestones.grading import (
    answers_match, compute_percentage, grade_answers, letter_grade, quiz_time_exceeded
)
from campus_platform.milestones.visibility import is_locked, strip_answers, student_milestone_view

NOW = datetime(2026, 4, 10, 12, 0)


class TestPercentage:

    def test_rounded_to_two_places(self):
        assert compute_percentage(2, 3) == 66.67
        assert compute_percentage(8, 10) == 80.0

    @pytest.mark.parametrize("max_score", [0, None, -5])
    def test_zero_max_score_is_ungraded(self, max_score):
        assert compute_percentage(5, max_score) is None

    def test_letter_grades(self):
        assert letter_grade(95) == "A+"
        assert letter_grade(80) == "A"
        assert letter_grade(49.99) == "F"
        assert letter_grade(None) is None


class TestQuizTiming:

    def test_within_limit(self):
        start = NOW
        assert not quiz_time_exceeded(start, 10, start + timedelta(minutes=10))

    def test_one_minute_over(self):
        start = NOW
        assert quiz_time_exceeded(start, 10, start + timedelta(minutes=11))

    def test_untimed(self):
        assert not quiz_time_exceeded(NOW, None, NOW + timedelta(days=3))


class TestAutoGrading:

    questions = [
        {"question_id": "Q1", "type": "multiple-choice", "correct_answer": "Paris", "points": 2},
        {"question_id": "Q2", "type": "true-false", "correct_answer": "True", "points": 1},
        {"question_id": "Q3", "type": "essay", "correct_answer": None, "points": 5},
    ]

    def test_only_objective_questions_count(self):
        graded, score, max_score = grade_answers(self.questions, [
            {"question_id": "Q1", "answer": " paris "},
            {"question_id": "Q2", "answer": False},
            {"question_id": "Q3", "answer": "A long answer"},
        ])

        assert score == 2
        assert max_score == 3
        assert [g["is_correct"] for g in graded] == [True, False, None]
        assert graded[2]["points"] is None

    def test_missing_answers_score_zero(self):
        graded, score, max_score = grade_answers(self.questions, [])
        assert score == 0
        assert max_score == 3
        assert graded[0]["answer"] is None

    def test_boolean_answers_compare_to_strings(self):
        assert answers_match(True, "true")
        assert not answers_match(None, "True")


def milestone(mid, order, start, end, questions=None):
    return {
        "milestone_id": mid,
        "order": order,
        "start_date": start,
        "end_date": end,
        "questions": questions or [{"question_id": "Q", "question": "2+2?", "correct_answer": "4"}],
    }


class TestStudentView:

    def milestones(self):
        day = timedelta(days=1)
        return [
            milestone("M1", 1, NOW - 10 * day, NOW - 5 * day),
            milestone("M2", 2, NOW - day, NOW + day),
            milestone("M3", 3, NOW + 5 * day, NOW + 9 * day),
            milestone("M4", 4, NOW + 10 * day, NOW + 12 * day),
        ]

    def test_drip_feed_stops_after_first_upcoming(self):
        view = student_milestone_view(self.milestones(), {}, NOW)

        assert [m["milestone_id"] for m in view] == ["M1", "M2", "M3"]
        assert view[0]["is_past"] and not view[0]["is_locked"]
        assert view[1]["is_current"]
        assert view[2]["is_locked"]
        assert view[2]["questions"] == []
        assert view[2]["question_count"] == 1

    def test_answers_never_leak(self):
        view = student_milestone_view(self.milestones(), {}, NOW)
        assert all("correct_answer" not in q for q in view[1]["questions"])

    def test_completed_upcoming_milestone_keeps_going(self):
        progress = {"M3": {"status": "completed"}}
        view = student_milestone_view(self.milestones(), progress, NOW)

        assert [m["milestone_id"] for m in view] == ["M1", "M2", "M3", "M4"]
        assert not view[2]["is_locked"]
        assert view[3]["is_locked"]

    def test_is_locked_rule(self):
        upcoming = milestone("M", 1, NOW + timedelta(hours=1), NOW + timedelta(days=1))
        assert is_locked(upcoming, None, NOW)
        assert not is_locked(upcoming, {"status": "completed"}, NOW)
        assert not is_locked(upcoming, None, NOW + timedelta(hours=2))

    def test_strip_answers_copies(self):
        original = milestone("M", 1, NOW, NOW)
        stripped = strip_answers(original)
        assert "correct_answer" in original["questions"][0]
        assert "correct_answer" not in stripped["questions"][0]
