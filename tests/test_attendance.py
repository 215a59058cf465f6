import csv
import io
from datetime import datetime, timedelta

import pytest

from campus_platform.attendance import attendance_service
from campus_platform.core.errors import ForbiddenError, NotFoundError, ValidationError

DAY = datetime(2026, 2, 9)


def entry(student, status="present", date=DAY, **fields):
    return {"student_id": student.user_id, "date": date, "status": status, **fields}


class TestMarking:

    async def test_mark_copies_student_profile(self, db, make_user):
        mentor = await make_user("mentor", full_name="Grace Mentor")
        student = await make_user("student", id_number="CS-042", department="CSE", section="B", year="3")

        result = await attendance_service.mark_attendance(
            db, mentor, [entry(student, date=DAY.replace(hour=10, minute=30), subject="Compilers")]
        )

        assert result["errors"] == []
        record = result["records"][0]
        assert record["date"] == DAY
        assert (record["roll_no"], record["department"], record["section"], record["year"]) == ("CS-042", "CSE", "B", "3")
        assert record["marked_by_name"] == "Grace Mentor"
        assert record["marked_by_role"] == "mentor"

    async def test_remarking_same_day_edits_record(self, db, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student")
        await attendance_service.mark_attendance(db, mentor, [entry(student, "absent")])

        result = await attendance_service.mark_attendance(
            db, mentor, [entry(student, "late", date=DAY + timedelta(hours=14), remarks="Bus delay")]
        )

        assert await db.attendance.count_documents({}) == 1
        record = result["records"][0]
        assert record["status"] == "late"
        assert record["remarks"] == "Bus delay"
        history = record["modification_history"]
        assert [(h["previous_status"], h["new_status"], h["reason"]) for h in history] == [("absent", "late", "Bus delay")]

    async def test_unknown_students_are_reported(self, db, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student")
        other_mentor = await make_user("mentor")

        result = await attendance_service.mark_attendance(db, mentor, [
            entry(student),
            {"student_id": "USR_MISSING", "date": DAY, "status": "present"},
            entry(other_mentor),
        ])

        assert len(result["records"]) == 1
        assert [e["student_id"] for e in result["errors"]] == ["USR_MISSING", other_mentor.user_id]

    async def test_mentor_cannot_mark_future_dates(self, db, make_user):
        mentor = await make_user("mentor")
        admin = await make_user("admin")
        student = await make_user("student")
        tomorrow = datetime.utcnow() + timedelta(days=1)

        with pytest.raises(ValidationError):
            await attendance_service.mark_attendance(db, mentor, [entry(student, date=tomorrow)])
        assert await db.attendance.count_documents({}) == 0

        result = await attendance_service.mark_attendance(db, admin, [entry(student, date=tomorrow)])
        assert len(result["records"]) == 1


class TestViews:

    async def marked(self, db, make_user):
        mentor = await make_user("mentor")
        ada = await make_user("student", full_name="Ada", department="CSE")
        bob = await make_user("student", full_name="Bob", department="ECE")
        statuses = {ada: ["present", "late", "absent", "present"], bob: ["absent", "absent", "present", "absent"]}
        for offset in range(4):
            await attendance_service.mark_attendance(db, mentor, [
                entry(student, statuses[student][offset], date=DAY + timedelta(days=offset))
                for student in (ada, bob)
            ])
        return mentor, ada, bob

    async def test_student_statistics(self, db, make_user):
        mentor, ada, bob = await self.marked(db, make_user)

        result = await attendance_service.get_student_attendance(db, ada, ada.user_id)

        assert result["statistics"] == {
            "total_classes": 4, "present": 2, "absent": 1, "late": 1, "percentage": 75.0,
        }
        assert result["attendance"][0]["date"] == DAY + timedelta(days=3)

        ranged = await attendance_service.get_student_attendance(
            db, mentor, ada.user_id, start_date=DAY + timedelta(days=1), end_date=DAY + timedelta(days=2)
        )
        assert ranged["statistics"]["total_classes"] == 2

    async def test_students_only_see_themselves(self, db, make_user):
        mentor, ada, bob = await self.marked(db, make_user)

        with pytest.raises(ForbiddenError):
            await attendance_service.get_student_attendance(db, ada, bob.user_id)

    async def test_by_date_with_department(self, db, make_user):
        await self.marked(db, make_user)

        result = await attendance_service.get_attendance_by_date(db, DAY, department="CSE")

        assert [r["student_name"] for r in result["attendance"]] == ["Ada"]
        assert result["summary"] == {"total": 1, "present": 1, "absent": 0, "late": 0}

    async def test_report_groups_by_student(self, db, make_user):
        mentor, ada, bob = await self.marked(db, make_user)

        report = await attendance_service.attendance_report(db, {"student_ids": [ada.user_id, bob.user_id]})

        assert len(report["attendance"]) == 8
        assert [(s["student_name"], s["percentage"]) for s in report["summary"]] == [("Ada", 75.0), ("Bob", 25.0)]

    async def test_summary_export(self, db, make_user):
        await self.marked(db, make_user)

        content = await attendance_service.export_attendance_csv(db, {"department": "ECE"})
        rows = list(csv.reader(io.StringIO(content)))

        assert rows[0][0] == "Student Name"
        assert rows[1][0] == "Bob"
        assert rows[1][-5:] == ["4", "1", "3", "0", "25.00"]

    async def test_detailed_export(self, db, make_user):
        await self.marked(db, make_user)

        content = await attendance_service.export_attendance_csv(db, {"department": "CSE"}, detailed=True)
        rows = list(csv.reader(io.StringIO(content)))

        assert len(rows) == 5
        assert rows[1][0] == "2026-02-12"
        assert rows[1][7] == "PRESENT"

    async def test_students_for_marking(self, db, make_user):
        await make_user("student", full_name="Zed", department="CSE")
        await make_user("student", full_name="Amy", department="CSE")
        await make_user("student", full_name="Pending", department="CSE", approval_status="pending")
        await make_user("mentor", department="CSE")

        students = await attendance_service.list_students(db, department="CSE")

        assert [s["full_name"] for s in students] == ["Amy", "Zed"]


class TestAdminEdits:

    async def test_update_keeps_history(self, db, make_user):
        mentor = await make_user("mentor")
        admin = await make_user("admin")
        student = await make_user("student")
        marked = await attendance_service.mark_attendance(db, mentor, [entry(student, "absent")])
        attendance_id = marked["records"][0]["attendance_id"]

        updated = await attendance_service.update_attendance(db, admin, attendance_id, {"status": "present"})

        assert updated["status"] == "present"
        assert updated["modification_history"][-1]["reason"] == "Record updated by admin"
        assert updated["modification_history"][-1]["modified_by"] == admin.user_id
        assert await db.audit_logs.count_documents({"action": "update_attendance"}) == 1

        with pytest.raises(ValidationError):
            await attendance_service.update_attendance(db, admin, attendance_id, {"status": None})

    async def test_delete(self, db, make_user):
        mentor = await make_user("mentor")
        admin = await make_user("admin")
        student = await make_user("student")
        marked = await attendance_service.mark_attendance(db, mentor, [entry(student)])
        attendance_id = marked["records"][0]["attendance_id"]

        await attendance_service.delete_attendance(db, admin, attendance_id)

        with pytest.raises(NotFoundError):
            await attendance_service.delete_attendance(db, admin, attendance_id)
        with pytest.raises(NotFoundError):
            await attendance_service.update_attendance(db, admin, attendance_id, {"status": "late"})
