import os
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from campus_platform import config
from campus_platform.ai import question_parser as parser
from campus_platform.core.errors import ValidationError
from campus_platform.core.permissions import UserContext, require_capability

router = APIRouter(prefix="/api/question-parser", tags=["Question Parser"])


class ValidateRequest(BaseModel):
    questions: List[dict]


@router.post("/parse")
async def parse_question_paper(
    file: UploadFile = File(...),
    user: UserContext = Depends(require_capability("question_paper", "parse"))
):
    """
    Extract structured questions from an uploaded question paper (PDF, DOCX or TXT)
    """
    ext = os.path.splitext(file.filename or "")[1].lower().lstrip(".")
    if ext not in config.QUESTION_PAPER_TYPES:
        raise ValidationError("Only PDF, DOC, DOCX and TXT files are allowed")

    content = await file.read()
    if len(content) > config.MAX_UPLOAD_MB * 1024 * 1024:
        raise ValidationError(f"File too large. Maximum size is {config.MAX_UPLOAD_MB}MB")

    result = await parser.parse_question_file(file.filename, content)
    return {
        "success": True,
        "message": f"Parsed {result['stats']['valid']} questions",
        **result,
    }


@router.post("/validate")
async def validate_questions(
    data: ValidateRequest,
    user: UserContext = Depends(require_capability("question_paper", "parse"))
):
    valid, invalid = parser.validate_questions(data.questions)
    return {
        "success": True,
        "questions": valid,
        "invalid_questions": invalid,
        "stats": parser.build_stats(valid, invalid),
    }
