from datetime import datetime, timedelta

import pytest

from campus_platform.core.errors import ConflictError, ForbiddenError, NotFoundError
from campus_platform.feedback import feedback_service

DAY = datetime(2026, 2, 9)


async def attend(db, student, statuses):
    for offset, status in enumerate(statuses):
        await db.attendance.insert_one({
            "attendance_id": f"ATT_{student.user_id}_{offset}",
            "student_id": student.user_id,
            "date": DAY + timedelta(days=offset),
            "status": status,
        })


def feedback(mentor, rating=4, **fields):
    return {"mentor_id": mentor.user_id, "rating": rating, "comment": "Clear explanations", "is_anonymous": False, **fields}


class TestEligibility:

    async def test_no_attendance(self, db, make_user):
        student = await make_user("student")
        result = await feedback_service.check_eligibility(db, student.user_id)

        assert result["eligible"] is False
        assert result["total_classes"] == 0

    async def test_late_counts_as_attended(self, db, make_user):
        student = await make_user("student")
        await attend(db, student, ["late", "absent", "absent"])

        result = await feedback_service.check_eligibility(db, student.user_id)

        assert result["eligible"] is True
        assert result["attendance_percentage"] == 33.3
        assert result["present_count"] == 1

    async def test_below_threshold(self, db, make_user):
        student = await make_user("student")
        await attend(db, student, ["present", "absent", "absent", "absent"])

        result = await feedback_service.check_eligibility(db, student.user_id)

        assert result["eligible"] is False
        assert "25.0%" in result["message"]


class TestSubmission:

    async def test_submit_once_per_mentor(self, db, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student", id_number="CS-007")
        await attend(db, student, ["present", "present"])

        created = await feedback_service.submit_feedback(db, student, feedback(mentor))

        assert created["status"] == "pending"
        assert created["student_roll_no"] == "CS-007"
        assert created["attendance_percentage"] == 100.0
        with pytest.raises(ConflictError):
            await feedback_service.submit_feedback(db, student, feedback(mentor, rating=1))

    async def test_ineligible_student_is_refused(self, db, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student")
        await attend(db, student, ["absent", "absent", "absent", "present"])

        with pytest.raises(ForbiddenError) as exc:
            await feedback_service.submit_feedback(db, student, feedback(mentor))

        assert exc.value.extra == {"attendance_percentage": 25.0}
        assert await db.mentor_feedback.count_documents({}) == 0

    async def test_target_must_be_a_mentor(self, db, make_user):
        student = await make_user("student")
        classmate = await make_user("student")
        await attend(db, student, ["present"])

        with pytest.raises(NotFoundError):
            await feedback_service.submit_feedback(db, student, feedback(classmate))


class TestReading:

    async def rated(self, db, make_user, ratings):
        mentor = await make_user("mentor")
        for index, rating in enumerate(ratings):
            student = await make_user("student", full_name=f"Student {index}")
            await attend(db, student, ["present"])
            await feedback_service.submit_feedback(
                db, student, feedback(mentor, rating=rating, is_anonymous=index == 0)
            )
        return mentor

    async def test_statistics(self, db, make_user):
        mentor = await self.rated(db, make_user, [5, 4, 4])

        stats = await feedback_service.rating_statistics(db, mentor.user_id)

        assert stats["average_rating"] == 4.3
        assert stats["total_feedbacks"] == 3
        assert stats["distribution"] == {1: 0, 2: 0, 3: 0, 4: 2, 5: 1}

    async def test_no_feedback_statistics(self, db, make_user):
        mentor = await make_user("mentor")
        stats = await feedback_service.rating_statistics(db, mentor.user_id)
        assert stats == {"average_rating": 0, "total_feedbacks": 0, "distribution": {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}}

    async def test_mentor_sees_own_feedback_with_anonymity(self, db, make_user):
        mentor = await self.rated(db, make_user, [5, 3])
        admin = await make_user("admin")

        own = await feedback_service.get_mentor_feedback(db, mentor, mentor.user_id)
        names = sorted(f["student_name"] for f in own["feedbacks"])
        assert names == ["Anonymous", "Student 1"]
        assert all(f["student_id"] is None for f in own["feedbacks"] if f["is_anonymous"])

        full = await feedback_service.get_mentor_feedback(db, admin, mentor.user_id)
        assert sorted(f["student_name"] for f in full["feedbacks"]) == ["Student 0", "Student 1"]

    async def test_mentor_cannot_read_another_mentor(self, db, make_user):
        mentor = await self.rated(db, make_user, [5])
        other = await make_user("mentor")

        with pytest.raises(ForbiddenError):
            await feedback_service.get_mentor_feedback(db, other, mentor.user_id)

    async def test_filters_and_recent(self, db, make_user):
        mentor = await self.rated(db, make_user, [5, 2, 2])

        assert len(await feedback_service.list_feedback(db, rating=2)) == 2
        assert len(await feedback_service.list_feedback(db, mentor_id="USR_NOBODY")) == 0

        stats = await feedback_service.mentor_statistics(db, mentor.user_id, recent=2)
        assert len(stats["recent_feedbacks"]) == 2


class TestAdminActions:

    async def test_respond_then_delete(self, db, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student")
        admin = await make_user("admin")
        await attend(db, student, ["present"])
        created = await feedback_service.submit_feedback(db, student, feedback(mentor))

        replied = await feedback_service.respond_to_feedback(
            db, admin, created["feedback_id"], " Thanks, shared with the mentor ", "resolved"
        )

        assert replied["admin_response"] == "Thanks, shared with the mentor"
        assert replied["admin_response_by"] == admin.user_id
        assert replied["status"] == "resolved"
        assert (await feedback_service.list_feedback(db, status="resolved"))[0]["feedback_id"] == created["feedback_id"]

        await feedback_service.delete_feedback(db, admin, created["feedback_id"])
        with pytest.raises(NotFoundError):
            await feedback_service.respond_to_feedback(db, admin, created["feedback_id"], "late reply")
