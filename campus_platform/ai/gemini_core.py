"""
Gemini access with simple key rotation.

Keys come from GEMINI_API_KEYS. A key that answers with a rate-limit error is
parked for a cooldown period and the next key is tried.
"""

from typing import Dict, List, Optional
import asyncio
import logging
import threading
import time

import google.generativeai as genai

from campus_platform import config
from campus_platform.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

# genai.configure sets process-wide state read again at call time
_sdk_lock = threading.Lock()


def _is_rate_limit(error: Exception) -> bool:
    text = str(error)
    return "429" in text or "RESOURCE_EXHAUSTED" in text or "quota" in text.lower()


class GeminiKeyPool:
    def __init__(self, api_keys: List[str], model_name: str, cooldown_seconds: int = 60):
        self.api_keys = list(api_keys)
        self.model_name = model_name
        self.cooldown_seconds = cooldown_seconds
        self.cooling_until: Dict[str, float] = {}
        self.next_index = 0
        self.lock = threading.Lock()

    def _next_key(self) -> Optional[str]:
        with self.lock:
            now = time.monotonic()
            for _ in range(len(self.api_keys)):
                key = self.api_keys[self.next_index % len(self.api_keys)]
                self.next_index += 1
                if self.cooling_until.get(key, 0) <= now:
                    return key
            return None

    def _park(self, key: str):
        with self.lock:
            self.cooling_until[key] = time.monotonic() + self.cooldown_seconds

    def run(self, prompt: str, max_retries: int = None) -> str:
        """
        Execute a prompt and return the stripped response text

        Raises:
            UpstreamFailure: no key configured, every key rate-limited, or the call failed
        """
        if not self.api_keys:
            raise UpstreamFailure("Generative model is not configured")

        attempts = max_retries or len(self.api_keys)
        for _ in range(attempts):
            key = self._next_key()
            if key is None:
                break

            try:
                with _sdk_lock:
                    genai.configure(api_key=key)
                    model = genai.GenerativeModel(self.model_name)
                    response = model.generate_content(prompt)
                return response.text.strip()
            except Exception as e:
                if _is_rate_limit(e):
                    logger.warning("Gemini key ...%s rate limited, trying next key", key[-4:])
                    self._park(key)
                    continue
                logger.error("Gemini call failed: %s", e)
                raise UpstreamFailure("Generative model call failed")

        raise UpstreamFailure("All generative model keys are rate limited")


_pool: Optional[GeminiKeyPool] = None


def get_pool() -> GeminiKeyPool:
    global _pool
    if _pool is None:
        _pool = GeminiKeyPool(config.GEMINI_API_KEYS, config.GEMINI_MODEL, config.GEMINI_KEY_COOLDOWN_SECONDS)
    return _pool


def run_gemini(prompt: str) -> str:
    return get_pool().run(prompt)


async def run_gemini_async(prompt: str) -> str:
    """The SDK call blocks, so it runs on a worker thread"""
    return await asyncio.to_thread(run_gemini, prompt)


def strip_code_fences(text: str) -> str:
    """Remove ```json ... ``` wrappers the model likes to add"""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
