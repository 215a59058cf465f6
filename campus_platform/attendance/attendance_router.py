from datetime import datetime
from typing import Optional
import io

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.attendance import attendance_service as service
from campus_platform.attendance.attendance_schemas import AttendanceUpdate, MarkAttendance
from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability

router = APIRouter(prefix="/api/attendance", tags=["Attendance"])


def _filters(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None,
    student_ids: Optional[str] = Query(None, description="Comma separated user ids")
) -> dict:
    return {
        "start_date": start_date,
        "end_date": end_date,
        "department": department,
        "section": section,
        "year": year,
        "student_ids": [s.strip() for s in student_ids.split(",") if s.strip()] if student_ids else None,
    }


@router.get("/my-attendance")
async def my_attendance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    subject: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "view_own"))
):
    result = await service.get_student_attendance(db, user, user.user_id, start_date, end_date, subject)
    return {"success": True, **result}


@router.post("/mark", status_code=201)
async def mark_attendance(
    data: MarkAttendance,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "mark"))
):
    result = await service.mark_attendance(db, user, [e.model_dump() for e in data.attendance_data])
    return {
        "success": True,
        "message": f"Attendance marked for {len(result['records'])} student(s)",
        "data": result["records"],
        "errors": result["errors"] or None,
    }


@router.get("/students")
async def students_for_attendance(
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "list_students"))
):
    students = await service.list_students(db, department, section, year)
    return {"success": True, "count": len(students), "data": students}


@router.get("/date")
async def attendance_by_date(
    date: datetime,
    department: Optional[str] = None,
    section: Optional[str] = None,
    year: Optional[str] = None,
    subject: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "view"))
):
    result = await service.get_attendance_by_date(db, date, department, section, year, subject)
    return {"success": True, **result}


@router.get("/report")
async def attendance_report(
    filters: dict = Depends(_filters),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "report"))
):
    return {"success": True, **await service.attendance_report(db, filters)}


@router.get("/export")
async def export_attendance(
    format: str = Query("summary", pattern="^(summary|detailed)$"),
    filters: dict = Depends(_filters),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("attendance", "export"))
):
    csv_content = await service.export_attendance_csv(db, filters, detailed=format == "detailed")
    filename = f"attendance-{format}-{datetime.utcnow():%Y%m%d%H%M%S}.csv"
    return StreamingResponse(
        io.StringIO(csv_content),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.get("/student/{student_id}")
async def student_attendance(
    student_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    subject: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    result = await service.get_student_attendance(db, user, student_id, start_date, end_date, subject)
    return {"success": True, **result}


@router.put("/{attendance_id}")
async def update_attendance(
    attendance_id: str,
    data: AttendanceUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("attendance", "update"))
):
    record = await service.update_attendance(db, admin, attendance_id, data.model_dump())
    return {"success": True, "message": "Attendance updated successfully", "data": record}


@router.delete("/{attendance_id}")
async def delete_attendance(
    attendance_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("attendance", "delete"))
):
    await service.delete_attendance(db, admin, attendance_id)
    return {"success": True, "message": "Attendance record deleted successfully"}
