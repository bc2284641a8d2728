"""Should-respond classifier backed by a fast DashScope completion model.

The model is asked for a strict YES/NO.  Any failure (timeout, HTTP error,
unexpected payload) falls back to ``heuristic_should_respond`` so callers
never see an exception.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Sequence

from errors import ClassifierError
from prompts import classifier_prompt

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_PHRASES = ("respond", "answer", "done")


def heuristic_should_respond(utterance: str, trigger_phrases: Sequence[str] = DEFAULT_TRIGGER_PHRASES) -> bool:
    if "?" in utterance:
        return True
    low = utterance.lower()
    return any(phrase.lower() in low for phrase in trigger_phrases if phrase)


class DashscopeIntentClassifier:
    def __init__(
        self,
        api_key: str,
        model: str = "qwen-turbo",
        timeout_s: float = 3.0,
        trigger_phrases: Sequence[str] = DEFAULT_TRIGGER_PHRASES,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s
        self._trigger_phrases = tuple(trigger_phrases)
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="intent")

    def classify(self, utterance: str, recent_context: Sequence[str]) -> bool:
        try:
            answer = self._ask(classifier_prompt(utterance, recent_context))
        except Exception as exc:
            logger.warning("Intent classifier failed (%s), falling back to heuristics", exc)
            return heuristic_should_respond(utterance, self._trigger_phrases)
        should_respond = "YES" in answer.upper()
        logger.info("Intent classifier: %r -> should_respond=%s", answer, should_respond)
        return should_respond

    def _ask(self, prompt: str) -> str:
        future = self._pool.submit(self._call_model, prompt)
        try:
            return future.result(timeout=self._timeout_s)
        except FutureTimeout as exc:
            future.cancel()
            raise ClassifierError(f"no answer within {self._timeout_s}s") from exc

    def _call_model(self, prompt: str) -> str:
        if dashscope is None:
            raise ClassifierError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise ClassifierError("No API key configured")

        response = dashscope.Generation.call(
            api_key=api_key,
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            result_format="message",
            max_tokens=10,
            temperature=0,
        )
        status = response.get("status_code") if isinstance(response, dict) else None
        if status is not None and status != 200:
            raise ClassifierError(f"completion request failed with status {status}")
        text = self._extract_text(response)
        if not text:
            raise ClassifierError("empty or malformed completion")
        return text

    def _extract_text(self, response: object) -> str:
        if not isinstance(response, dict):
            return ""
        output = response.get("output") or {}
        choices = output.get("choices") or []
        if not choices:
            return str(output.get("text") or "").strip()
        message = choices[0].get("message") or {}
        content = message.get("content", "")
        if isinstance(content, list):
            content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
        return str(content).strip()
