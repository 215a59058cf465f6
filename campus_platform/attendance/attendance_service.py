from datetime import datetime, timedelta
from typing import Dict, List, Optional
import csv
import io
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform.attendance.attendance_models import ATTENDED, AttendanceRecord, Modification
from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import NotFoundError, ValidationError
from campus_platform.core.permissions import Role, UserContext
from campus_platform.realtime.manager import notifier, ATTENDANCE_ROOM, user_room

logger = logging.getLogger(__name__)

STATUSES = ("present", "absent", "late")


def day_start(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_statistics(records: List[dict]) -> dict:
    counts = {status: 0 for status in STATUSES}
    for record in records:
        counts[record["status"]] += 1
    total = len(records)
    attended = sum(counts[s] for s in ATTENDED)
    return {
        "total_classes": total,
        **counts,
        "percentage": round(attended / total * 100, 2) if total else 0.0,
    }


def _range_query(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None,
    student_ids: Optional[List[str]] = None
) -> dict:
    query = {}
    if start_date or end_date:
        query["date"] = {}
        if start_date:
            query["date"]["$gte"] = day_start(start_date)
        if end_date:
            query["date"]["$lte"] = day_start(end_date)
    if department:
        query["department"] = department
    if section:
        query["section"] = section
    if year:
        query["year"] = year
    if student_ids:
        query["student_id"] = {"$in": student_ids}
    return query


# ==================== MARKING ====================

async def _apply_entry(db: AsyncIOMotorDatabase, user: UserContext, student: dict, entry: dict, now: datetime) -> dict:
    date = day_start(entry["date"])
    existing = await db.attendance.find_one({"student_id": student["user_id"], "date": date})

    if existing is None:
        record = AttendanceRecord(
            attendance_id=generate_id("ATT"),
            student_id=student["user_id"],
            student_name=student.get("full_name"),
            roll_no=student.get("id_number") or "N/A",
            date=date,
            status=entry["status"],
            subject=entry.get("subject") or "",
            department=student.get("department") or "General",
            section=student.get("section") or "A",
            year=student.get("year") or "1",
            marked_by=user.user_id,
            marked_by_name=user.full_name,
            marked_by_role=user.role,
            remarks=entry.get("remarks") or "",
            created_at=now,
            last_modified=now,
        ).model_dump()
        try:
            await db.attendance.insert_one(record)
            return record
        except DuplicateKeyError:
            # Marked by someone else in the meantime
            existing = await db.attendance.find_one({"student_id": student["user_id"], "date": date})

    return await _modify(db, user, existing, entry, entry.get("remarks") or "Status updated", now)


async def _modify(db: AsyncIOMotorDatabase, user: UserContext, record: dict, changes: dict, reason: str, now: datetime) -> dict:
    update = {"last_modified": now}
    if changes.get("status"):
        update["status"] = changes["status"]
    if changes.get("subject"):
        update["subject"] = changes["subject"]
    if changes.get("remarks"):
        update["remarks"] = changes["remarks"]

    entry = Modification(
        modified_by=user.user_id,
        modified_at=now,
        previous_status=record["status"],
        new_status=update.get("status", record["status"]),
        reason=reason,
    ).model_dump()

    await db.attendance.update_one(
        {"attendance_id": record["attendance_id"]},
        {"$set": update, "$push": {"modification_history": entry}}
    )
    record.update(update)
    record.setdefault("modification_history", []).append(entry)
    return record


async def mark_attendance(db: AsyncIOMotorDatabase, user: UserContext, entries: List[dict]) -> dict:
    """
    Mark a batch of students. A student already marked for that day gets the
    record edited, with the change kept in its modification history.

    Unknown students are reported per entry and do not fail the batch.
    """
    end_of_today = day_start(datetime.utcnow()) + timedelta(days=1)
    if not user.can("attendance", "mark_future") and any(e["date"] >= end_of_today for e in entries):
        raise ValidationError("Mentors cannot mark attendance for future dates")

    now = datetime.utcnow()
    records, errors = [], []

    for entry in entries:
        student = await db.users.find_one({"user_id": entry["student_id"], "role": Role.STUDENT.value})
        if not student:
            errors.append({"student_id": entry["student_id"], "error": "Student not found"})
            continue
        records.append(await _apply_entry(db, user, student, entry, now))

    logger.info("%s marked attendance for %d students (%d rejected)", user.user_id, len(records), len(errors))

    if records:
        await notifier.emit(ATTENDANCE_ROOM, "attendance-marked", {
            "date": day_start(entries[0]["date"]),
            "marked_by": user.full_name,
            "count": len(records),
        })
        for record in records:
            await notifier.emit(user_room(record["student_id"]), "attendance-updated", {
                "date": record["date"], "status": record["status"], "subject": record["subject"],
            })

    return {"records": serialize_many(records), "errors": errors}


# ==================== VIEWS ====================

async def get_student_attendance(
    db: AsyncIOMotorDatabase,
    viewer: UserContext,
    student_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    subject: Optional[str] = None
) -> dict:
    viewer.require("attendance", "view", is_owner=viewer.user_id == student_id)

    query = {"student_id": student_id, **_range_query(start_date, end_date)}
    if subject:
        query["subject"] = subject

    records = await db.attendance.find(query).sort("date", -1).to_list(length=None)
    return {"attendance": serialize_many(records), "statistics": compute_statistics(records)}


async def get_attendance_by_date(
    db: AsyncIOMotorDatabase,
    date: datetime,
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None,
    subject: Optional[str] = None
) -> dict:
    query = _range_query(date, date, department, section, year)
    if subject:
        query["subject"] = subject

    records = await db.attendance.find(query).sort("student_name", 1).to_list(length=None)
    stats = compute_statistics(records)
    return {
        "attendance": serialize_many(records),
        "summary": {"total": stats["total_classes"], **{s: stats[s] for s in STATUSES}},
    }


async def _report_records(db: AsyncIOMotorDatabase, filters: dict) -> List[dict]:
    return await db.attendance.find(_range_query(**filters)).sort(
        [("date", -1), ("student_name", 1)]
    ).to_list(length=None)


def summarize_by_student(records: List[dict]) -> List[dict]:
    grouped: Dict[str, List[dict]] = {}
    for record in records:
        grouped.setdefault(record["student_id"], []).append(record)

    summary = []
    for student_id, rows in grouped.items():
        first = rows[0]
        summary.append({
            "student_id": student_id,
            "student_name": first.get("student_name"),
            "roll_no": first.get("roll_no"),
            "department": first.get("department"),
            "section": first.get("section"),
            "year": first.get("year"),
            **compute_statistics(rows),
        })
    return sorted(summary, key=lambda s: s["student_name"] or "")


async def attendance_report(db: AsyncIOMotorDatabase, filters: dict) -> dict:
    records = await _report_records(db, filters)
    return {"attendance": serialize_many(records), "summary": summarize_by_student(records)}


async def export_attendance_csv(db: AsyncIOMotorDatabase, filters: dict, detailed: bool = False) -> str:
    records = await _report_records(db, filters)

    output = io.StringIO()
    writer = csv.writer(output)

    if detailed:
        writer.writerow([
            "Date", "Student Name", "Roll No", "Department", "Section", "Year",
            "Subject", "Status", "Marked By", "Remarks",
        ])
        for r in records:
            writer.writerow([
                r["date"].strftime("%Y-%m-%d"), r.get("student_name"), r.get("roll_no"),
                r.get("department"), r.get("section"), r.get("year"),
                r.get("subject") or "N/A", r["status"].upper(), r.get("marked_by_name"), r.get("remarks") or "",
            ])
    else:
        writer.writerow([
            "Student Name", "Roll No", "Department", "Section", "Year",
            "Total Classes", "Present", "Absent", "Late", "Attendance %",
        ])
        for s in summarize_by_student(records):
            writer.writerow([
                s["student_name"], s["roll_no"], s["department"], s["section"], s["year"],
                s["total_classes"], s["present"], s["absent"], s["late"], f"{s['percentage']:.2f}",
            ])

    return output.getvalue()


async def list_students(
    db: AsyncIOMotorDatabase,
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None
) -> List[dict]:
    query = {"role": Role.STUDENT.value, "is_active": True, "approval_status": "approved"}
    if department:
        query["department"] = department
    if section:
        query["section"] = section
    if year:
        query["year"] = year

    projection = {
        "_id": 0, "user_id": 1, "full_name": 1, "email": 1,
        "id_number": 1, "department": 1, "section": 1, "year": 1,
    }
    return await db.users.find(query, projection).sort("full_name", 1).to_list(length=None)


# ==================== ADMIN EDITS ====================

async def _get_record(db: AsyncIOMotorDatabase, attendance_id: str) -> dict:
    record = await db.attendance.find_one({"attendance_id": attendance_id})
    if not record:
        raise NotFoundError("Attendance record not found")
    return record


async def update_attendance(db: AsyncIOMotorDatabase, admin: UserContext, attendance_id: str, patch: dict) -> dict:
    record = await _get_record(db, attendance_id)

    changes = {k: v for k, v in patch.items() if v is not None}
    if not changes:
        raise ValidationError("No fields to update")

    record = await _modify(
        db, admin, record, changes, changes.get("remarks") or "Record updated by admin", datetime.utcnow()
    )
    await log_audit(db, admin, "update_attendance", "attendance", attendance_id, {"fields": sorted(changes)})

    await notifier.emit(user_room(record["student_id"]), "attendance-updated", {
        "date": record["date"], "status": record["status"], "subject": record["subject"],
    })
    return serialize_doc(record)


async def delete_attendance(db: AsyncIOMotorDatabase, admin: UserContext, attendance_id: str):
    result = await db.attendance.delete_one({"attendance_id": attendance_id})
    if result.deleted_count == 0:
        raise NotFoundError("Attendance record not found")
    await log_audit(db, admin, "delete_attendance", "attendance", attendance_id)
