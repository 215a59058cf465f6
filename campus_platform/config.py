"""
Campus Platform configuration
Everything is read from the environment once at import time
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "campus_platform")

# Tokens
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "campus-platform-dev-secret")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "30"))

# Bootstrap account, created on startup when both are set
SUPER_ADMIN_EMAIL = os.getenv("SUPER_ADMIN_EMAIL")
SUPER_ADMIN_PASSWORD = os.getenv("SUPER_ADMIN_PASSWORD")

DEBUG = _flag("DEBUG")
FRONTEND_URL = os.getenv("FRONTEND_URL", "*")

# Generative model
GEMINI_API_KEYS = [
    key.strip()
    for key in os.getenv("GEMINI_API_KEYS", os.getenv("GEMINI_API_KEY", "")).split(",")
    if key.strip()
]
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_KEY_COOLDOWN_SECONDS = 60

# Object storage (Cloudinary REST API)
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))

# SMTP
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
EMAIL_FROM = os.getenv("EMAIL_FROM") or EMAIL_USER or "no-reply@campus-platform.local"

# OTP
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "300"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))

# Uploads
MAX_UPLOAD_MB = 10
MAX_SUBMISSION_FILES = 5
SUBMISSION_FILE_TYPES = ["pdf", "doc", "docx", "txt", "jpg", "jpeg", "png", "zip", "rar"]
QUESTION_PAPER_TYPES = ["pdf", "doc", "docx", "txt"]

# Exam day window used by the global distribution
EXAM_DAY_START = "09:00"
EXAM_DAY_END = "18:00"
EXAM_SLOT_BUFFER_MINUTES = 10

# Mentor feedback is open to students at or above this attendance
FEEDBACK_MIN_ATTENDANCE_PERCENT = float(os.getenv("FEEDBACK_MIN_ATTENDANCE_PERCENT", "30"))
