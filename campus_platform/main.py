from datetime import datetime
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campus_platform import config
from campus_platform.core.database import db, create_indexes
from campus_platform.core.errors import register_error_handlers
from campus_platform.realtime.manager import notifier
from campus_platform.auth.auth_service import ensure_super_admin
from campus_platform.auth.auth_router import router as auth_router
from campus_platform.auth.otp_router import router as otp_router
from campus_platform.admin.admin_router import router as admin_router
from campus_platform.teams.team_router import router as team_router
from campus_platform.milestones.chain_router import router as chain_router
from campus_platform.milestones.milestone_router import router as milestone_router
from campus_platform.milestones.progress_router import router as progress_router
from campus_platform.exams.exam_router import router as exam_router
from campus_platform.forum.forum_router import router as forum_router
from campus_platform.ai.question_router import router as question_router
from campus_platform.attendance.attendance_router import router as attendance_router
from campus_platform.feedback.feedback_router import router as feedback_router
from campus_platform.realtime.router import router as realtime_router

logging.basicConfig(
    level=logging.DEBUG if config.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("campus_platform")

app = FastAPI(title="Campus Platform API")


@app.on_event("startup")
async def startup_event():
    await create_indexes(db)
    await ensure_super_admin(db)
    logger.info("Campus Platform started (debug=%s)", config.DEBUG)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL] if config.FRONTEND_URL != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# ==================== ROUTER REGISTRATION ====================
app.include_router(auth_router)
app.include_router(otp_router)
app.include_router(admin_router)
app.include_router(team_router)
app.include_router(chain_router)
app.include_router(milestone_router)
app.include_router(progress_router)
app.include_router(exam_router)
app.include_router(forum_router)
app.include_router(question_router)
app.include_router(attendance_router)
app.include_router(feedback_router)
app.include_router(realtime_router)


@app.get("/api/health")
async def health():
    return {
        "success": True,
        "status": "ok",
        "connections": len(notifier.connections),
        "timestamp": datetime.utcnow(),
    }
