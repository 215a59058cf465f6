"""
Question paper parsing.

Text is pulled out of the uploaded document, handed to the generative model
for structured extraction, and run through a line-pattern parser when the
model is unavailable or answers with something unusable. Both paths end in
validate_questions(), which is also exposed on its own for edited questions.
"""

from typing import List, Optional, Tuple
import io
import json
import logging
import os
import re
import zipfile
from datetime import datetime

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from campus_platform.ai.gemini_core import run_gemini_async, strip_code_fences
from campus_platform.ai.prompts import render
from campus_platform.core.errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 20
MIN_QUESTION_LENGTH = 5
QUESTION_TYPES = ("multiple-choice", "true-false", "short-answer", "essay")
DIFFICULTIES = ("easy", "medium", "hard")

# ==================== TEXT EXTRACTION ====================


def extract_text(filename: str, content: bytes) -> str:
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")

    if ext == "txt":
        text = content.decode("utf-8", errors="replace")
    elif ext == "pdf":
        try:
            reader = PdfReader(io.BytesIO(content))
            text = "\n".join(page.extract_text() or "" for page in reader.pages)
        except PdfReadError as e:
            raise ValidationError(f"Could not read PDF file: {e}")
    elif ext == "docx":
        try:
            document = Document(io.BytesIO(content))
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as e:
            raise ValidationError(f"Could not read DOCX file: {e}")
        text = "\n".join(p.text for p in document.paragraphs)
    elif ext == "doc":
        raise ValidationError("Legacy .doc files are not supported. Please save the file as .docx or PDF.")
    else:
        raise ValidationError("Unsupported file type. Upload a PDF, DOCX or TXT file.")

    text = text.replace("\r\n", "\n").strip()
    if len(text) < MIN_TEXT_LENGTH:
        raise ValidationError("Could not extract enough text from the file")
    return text


# ==================== AI PATH ====================


def parse_ai_response(raw: str) -> List[dict]:
    """
    Raises:
        ValueError: response does not contain a JSON array of objects
    """
    text = strip_code_fences(raw)
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        raise ValueError("No JSON array in model response")

    data = json.loads(text[start:end + 1])
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError("Model response is not a list of question objects")
    return data


async def parse_with_ai(text: str) -> List[dict]:
    raw = await run_gemini_async(render("questions", "extract", text=text))
    return parse_ai_response(raw)


# ==================== FALLBACK LINE PARSER ====================

QUESTION_PATTERNS = [
    re.compile(r"^\s*Q(?:uestion)?\s*\.?\s*(\d+)\s*[.):\-]?\s*(.+)$", re.IGNORECASE),
    re.compile(r"^\s*(\d+)\s*[.)]\s*(.+)$"),
    re.compile(r"^\s*\[(\d+)\]\s*(.+)$"),
]
OPTION_PATTERN = re.compile(r"^\s*\(?([A-Ea-e])\s*[.)\]:]\s*(.+)$")
ANSWER_PATTERN = re.compile(r"^\s*(?:correct\s+answer|answer|ans)\s*[:.\-]\s*(.+)$", re.IGNORECASE)
EXPLANATION_PATTERN = re.compile(r"^\s*(?:explanation|reason)\s*[:.\-]\s*(.+)$", re.IGNORECASE)
ANSWER_KEY_HEADER = re.compile(r"^\s*(?:answer\s*key|answers)\s*:?\s*$", re.IGNORECASE)
ANSWER_KEY_LINE = re.compile(r"^\s*(\d+)\s*[.):\-]?\s*([A-Ea-e]|true|false|.+)$", re.IGNORECASE)
POINTS_PATTERN = re.compile(r"[\(\[]\s*(\d+(?:\.\d+)?)\s*(?:marks?|points?|pts?)\s*[\)\]]", re.IGNORECASE)
DIFFICULTY_PATTERN = re.compile(r"[\(\[]\s*(easy|medium|hard)\s*[\)\]]", re.IGNORECASE)
CORRECT_MARKERS = ["(correct)", "[correct]", "[answer]", "✓", "✔", "→", "*"]
TRUE_FALSE_HINTS = ("true or false", "true/false", "(t/f)", "t/f")
ESSAY_HINTS = ("explain", "describe", "discuss", "elaborate", "essay", "justify", "compare")


def extract_points(text: str) -> Tuple[Optional[float], str]:
    match = POINTS_PATTERN.search(text)
    if not match:
        return None, text
    value = float(match.group(1))
    return (int(value) if value.is_integer() else value), (text[:match.start()] + text[match.end():]).strip()


def extract_difficulty(text: str) -> Tuple[Optional[str], str]:
    match = DIFFICULTY_PATTERN.search(text)
    if not match:
        return None, text
    return match.group(1).lower(), (text[:match.start()] + text[match.end():]).strip()


def strip_correct_marker(option: str) -> Tuple[bool, str]:
    text = option.strip()
    for marker in CORRECT_MARKERS:
        if text.endswith(marker):
            return True, text[:-len(marker)].strip()
        if text.startswith(marker):
            return True, text[len(marker):].strip()
    return False, text


def detect_question_type(question: str, options: List[str], answer: Optional[str] = None) -> str:
    options = options or []
    if len(options) >= 2:
        if len(options) == 2 and {o.strip().lower() for o in options} == {"true", "false"}:
            return "true-false"
        return "multiple-choice"

    text = (question or "").lower()
    if any(hint in text for hint in TRUE_FALSE_HINTS):
        return "true-false"
    if answer and answer.strip().lower() in ("true", "false", "t", "f"):
        return "true-false"
    if any(re.search(r"\b" + hint, text) for hint in ESSAY_HINTS):
        return "essay"
    return "short-answer"


def _resolve_answer(answer: Optional[str], options: List[str]) -> Optional[str]:
    if not answer:
        return answer
    answer = answer.strip()
    if options and len(answer) == 1 and answer.upper() in "ABCDE":
        index = ord(answer.upper()) - ord("A")
        if index < len(options):
            return options[index]
    letter = re.match(r"^\(?([A-Ea-e])[.)]\s+(.+)$", answer)
    if options and letter:
        return letter.group(2).strip()
    return answer


def finalize_question(draft: dict) -> dict:
    """Turn a parser draft into the common question shape"""
    text = " ".join(draft.get("lines", [])).strip()
    points, text = extract_points(text)
    difficulty, text = extract_difficulty(text)

    options = draft.get("options", [])
    answer = _resolve_answer(draft.get("answer"), options)
    if answer is None and draft.get("marked") is not None:
        answer = options[draft["marked"]]

    qtype = detect_question_type(text, options, answer)
    if qtype == "true-false":
        options = ["True", "False"]

    return {
        "question": text,
        "type": qtype,
        "options": options if qtype in ("multiple-choice", "true-false") else [],
        "correct_answer": answer or "",
        "points": points or 1,
        "explanation": " ".join(draft.get("explanation", [])).strip(),
        "difficulty": difficulty or "medium",
        "topic": "",
        "number": draft.get("number"),
    }


def _match_question(line: str):
    for pattern in QUESTION_PATTERNS:
        match = pattern.match(line)
        if match:
            return int(match.group(1)), match.group(2).strip()
    return None


def parse_with_fallback(text: str) -> List[dict]:
    drafts: List[dict] = []
    answer_key = {}
    current = None
    in_answer_key = False
    in_explanation = False

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if not line:
            in_explanation = False
            continue

        if ANSWER_KEY_HEADER.match(line):
            in_answer_key = True
            current = None
            continue

        if in_answer_key:
            match = ANSWER_KEY_LINE.match(line)
            if match:
                answer_key[int(match.group(1))] = match.group(2).strip()
            continue

        answer = ANSWER_PATTERN.match(line)
        if answer and current is not None:
            current["answer"] = answer.group(1).strip()
            in_explanation = False
            continue

        explanation = EXPLANATION_PATTERN.match(line)
        if explanation and current is not None:
            current["explanation"].append(explanation.group(1).strip())
            in_explanation = True
            continue

        option = OPTION_PATTERN.match(line)
        if option and current is not None:
            is_correct, option_text = strip_correct_marker(option.group(2))
            if is_correct:
                current["marked"] = len(current["options"])
            current["options"].append(option_text)
            in_explanation = False
            continue

        question = _match_question(line)
        if question:
            number, body = question
            current = {"number": number, "lines": [body], "options": [], "explanation": []}
            drafts.append(current)
            in_explanation = False
            continue

        if current is None:
            continue
        if in_explanation:
            current["explanation"].append(line)
        elif not current["options"]:
            current["lines"].append(line)

    for draft in drafts:
        if not draft.get("answer") and draft["number"] in answer_key:
            draft["answer"] = answer_key[draft["number"]]

    return [finalize_question(d) for d in drafts]


# ==================== VALIDATION ====================

TRUE_VALUES = {"true", "t", "yes", "1"}
FALSE_VALUES = {"false", "f", "no", "0"}


def _normalize_type(value) -> str:
    text = str(value or "").strip().lower().replace("_", "-").replace(" ", "-")
    aliases = {"mcq": "multiple-choice", "multiple": "multiple-choice", "tf": "true-false",
               "boolean": "true-false", "short": "short-answer", "long-answer": "essay"}
    return aliases.get(text, text)


def _match_option(answer: str, options: List[str]) -> Optional[str]:
    """Best effort repair of an answer that does not exactly equal an option"""
    if answer in options:
        return answer

    wanted = answer.strip().lower()
    for option in options:
        if option.strip().lower() == wanted:
            return option

    resolved = _resolve_answer(answer, options)
    if resolved in options:
        return resolved

    contained = [o for o in options if wanted and (wanted in o.lower() or o.lower() in wanted)]
    if len(contained) == 1:
        return contained[0]
    return None


def _normalize_points(value) -> float:
    try:
        points = float(value)
    except (TypeError, ValueError):
        return 1
    if points <= 0:
        return 1
    return int(points) if points.is_integer() else points


def validate_questions(questions: List[dict]) -> Tuple[List[dict], List[dict]]:
    """
    Split raw question dicts into (valid, invalid).

    Valid entries are normalized copies carrying their original_index;
    invalid entries list the reasons they were rejected.
    """
    valid, invalid = [], []

    for index, raw in enumerate(questions):
        if not isinstance(raw, dict):
            invalid.append({"original_index": index, "question": str(raw), "errors": ["Not a question object"]})
            continue

        errors = []
        text = str(raw.get("question") or "").strip()
        if len(text) < MIN_QUESTION_LENGTH:
            errors.append(f"Question text must be at least {MIN_QUESTION_LENGTH} characters")

        options = [str(o).strip() for o in (raw.get("options") or []) if str(o).strip()]
        answer = raw.get("correct_answer", raw.get("correctAnswer"))
        answer = "" if answer is None else str(answer).strip()

        qtype = _normalize_type(raw.get("type"))
        if qtype not in QUESTION_TYPES:
            qtype = detect_question_type(text, options, answer)

        if qtype == "multiple-choice":
            if len(options) < 2:
                errors.append("Multiple choice questions need at least 2 options")
            elif not answer:
                errors.append("Correct answer is missing")
            else:
                fixed = _match_option(answer, options)
                if fixed is None:
                    errors.append("Correct answer must match one of the options")
                else:
                    answer = fixed
        elif qtype == "true-false":
            lowered = answer.lower()
            if lowered in TRUE_VALUES:
                answer = "True"
            elif lowered in FALSE_VALUES:
                answer = "False"
            else:
                errors.append("True/false answer must be True or False")
            options = ["True", "False"]
        else:
            options = []

        if errors:
            invalid.append({"original_index": index, "question": text, "errors": errors})
            continue

        difficulty = str(raw.get("difficulty") or "medium").lower()
        valid.append({
            "question": text,
            "type": qtype,
            "options": options,
            "correct_answer": answer,
            "points": _normalize_points(raw.get("points")),
            "explanation": str(raw.get("explanation") or "").strip(),
            "difficulty": difficulty if difficulty in DIFFICULTIES else "medium",
            "topic": str(raw.get("topic") or "").strip(),
            "original_index": index,
        })

    return valid, invalid


def build_stats(valid: List[dict], invalid: List[dict]) -> dict:
    by_type = {qtype: 0 for qtype in QUESTION_TYPES}
    for q in valid:
        by_type[q["type"]] += 1
    return {
        "total_found": len(valid) + len(invalid),
        "valid": len(valid),
        "invalid": len(invalid),
        "by_type": by_type,
        "total_points": sum(q["points"] for q in valid),
    }


async def parse_question_text(text: str, source_name: str = None) -> dict:
    parser = "ai"
    try:
        raw_questions = await parse_with_ai(text)
        if not raw_questions:
            raise ValueError("Model returned no questions")
    except (UpstreamFailure, ValueError) as e:
        logger.warning("Question parsing falling back to line parser: %s", e)
        parser = "fallback"
        raw_questions = parse_with_fallback(text)

    valid, invalid = validate_questions(raw_questions)

    return {
        "questions": valid,
        "invalid_questions": invalid,
        "stats": build_stats(valid, invalid),
        "metadata": {
            "parser": parser,
            "source": source_name,
            "text_length": len(text),
            "parsed_at": datetime.utcnow(),
        },
    }


async def parse_question_file(filename: str, content: bytes) -> dict:
    text = extract_text(filename, content)
    return await parse_question_text(text, source_name=filename)
