import json
import logging
import re
from typing import Optional

from pydantic import BaseModel

from campus_platform.ai.gemini_core import run_gemini_async, strip_code_fences
from campus_platform.ai.prompts import render
from campus_platform.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

BLOCKED_KEYWORDS = [
    "kill", "murder", "suicide", "bomb", "terrorist", "rape", "assault", "violence",
    "weapon", "drug", "cocaine", "heroin", "hurt", "harm", "hate", "discriminat",
    "dumb", "stupid idiot", "get lost", "kys", "die", "death threat", "beat up", "attack",
]

# Stems match any continuation, whole keywords only take common inflections
_STEMS = {"discriminat"}


def _keyword_pattern(keyword: str) -> re.Pattern:
    body = r"\s+".join(re.escape(part) for part in keyword.split())
    tail = r"\w*" if keyword in _STEMS else r"(?:s|es|ed|ing|er|ers)?\b"
    return re.compile(r"\b" + body + tail, re.IGNORECASE)


_KEYWORD_PATTERNS = [(kw, _keyword_pattern(kw)) for kw in BLOCKED_KEYWORDS]

SUGGESTIONS = {
    "violence": "Please remove threatening or violent language and express your point respectfully.",
    "hate": "Please avoid language that targets people for who they are. Focus on ideas, not identities.",
    "bullying": "Please keep the discussion respectful and avoid insulting other members.",
    "self-harm": "If you are going through a hard time, please reach out to a counsellor or someone you trust. "
                 "Consider rephrasing your post to ask for support.",
    "drugs": "Please remove references to drugs or illegal activities.",
    "generic": "Please revise your content to follow the community guidelines.",
}

_SUGGESTION_KEYS = [
    ("self-harm", ("suicide", "self-harm", "self harm", "kys")),
    ("violence", ("violence", "violent", "threat", "kill", "murder", "bomb", "weapon", "attack", "assault")),
    ("hate", ("hate", "discriminat", "racis", "sexis")),
    ("bullying", ("bully", "harass", "insult", "stupid", "dumb", "idiot")),
    ("drugs", ("drug", "illegal", "cocaine", "heroin")),
]


class ModerationResult(BaseModel):
    is_allowed: bool
    reason: str = ""
    suggestion: Optional[str] = None
    source: str = "ai"


def get_improvement_suggestion(reason: str) -> str:
    text = (reason or "").lower()
    for key, markers in _SUGGESTION_KEYS:
        if any(marker in text for marker in markers):
            return SUGGESTIONS[key]
    return SUGGESTIONS["generic"]


def keyword_check(text: str) -> ModerationResult:
    """Conservative local check used whenever the model is unavailable"""
    for keyword, pattern in _KEYWORD_PATTERNS:
        if pattern.search(text or ""):
            reason = f"Content contains inappropriate language ({keyword})"
            return ModerationResult(
                is_allowed=False,
                reason=reason,
                suggestion=get_improvement_suggestion(reason),
                source="keyword",
            )
    return ModerationResult(is_allowed=True, source="keyword")


def parse_moderation_response(raw: str) -> ModerationResult:
    """
    Raises:
        ValueError: response is not the expected JSON object
    """
    data = json.loads(strip_code_fences(raw))
    if not isinstance(data, dict) or not isinstance(data.get("isAllowed"), bool):
        raise ValueError("Moderation response is missing a boolean isAllowed")

    reason = str(data.get("reason") or "")
    if data["isAllowed"]:
        return ModerationResult(is_allowed=True, reason=reason)
    return ModerationResult(is_allowed=False, reason=reason, suggestion=get_improvement_suggestion(reason))


async def _moderate(prompt: str, text: str) -> ModerationResult:
    if not text.strip():
        return ModerationResult(is_allowed=True, source="empty")

    try:
        return parse_moderation_response(await run_gemini_async(prompt))
    except (UpstreamFailure, ValueError) as e:
        logger.warning("Moderation falling back to keyword check: %s", e)
        return keyword_check(text)


async def moderate_post(title: str, content: str) -> ModerationResult:
    prompt = render("moderation", "post", title=title or "", content=content or "")
    return await _moderate(prompt, f"{title or ''}\n{content or ''}")


async def moderate_comment(content: str) -> ModerationResult:
    prompt = render("moderation", "comment", content=content or "")
    return await _moderate(prompt, content or "")
