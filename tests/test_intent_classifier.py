"""Tests for DashscopeIntentClassifier."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

from intent_classifier import DashscopeIntentClassifier, heuristic_should_respond


def _reply(text: str, status: int = 200) -> dict:
    return {"status_code": status, "output": {"choices": [{"message": {"role": "assistant", "content": text}}]}}


# ---------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------

def test_heuristic_question_mark_always_responds() -> None:
    assert heuristic_should_respond("is it far?", trigger_phrases=())


def test_heuristic_trigger_phrases_are_case_insensitive() -> None:
    assert heuristic_should_respond("Okay I'm DONE", ("done",))
    assert not heuristic_should_respond("I want to", ("done",))


# ---------------------------------------------------------------
# Model answers
# ---------------------------------------------------------------

@patch("intent_classifier.dashscope")
def test_yes_answer_means_respond(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _reply("YES")
    classifier = DashscopeIntentClassifier(api_key="test-key")

    assert classifier.classify("turn left here", ["where is the station"])

    kwargs = mock_dashscope.Generation.call.call_args.kwargs
    assert kwargs["api_key"] == "test-key"
    assert kwargs["model"] == "qwen-turbo"
    prompt = kwargs["messages"][0]["content"]
    assert '"turn left here"' in prompt
    assert "where is the station" in prompt


@patch("intent_classifier.dashscope")
def test_answer_is_matched_case_insensitively(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _reply("yes.")
    assert DashscopeIntentClassifier(api_key="k").classify("hello there", [])


@patch("intent_classifier.dashscope")
def test_no_answer_means_keep_listening(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _reply("NO")
    assert not DashscopeIntentClassifier(api_key="k").classify("hmm let me think", [])


# ---------------------------------------------------------------
# Failures fall back to the heuristic
# ---------------------------------------------------------------

@patch("intent_classifier.dashscope")
def test_http_error_falls_back(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _reply("", status=500)
    classifier = DashscopeIntentClassifier(api_key="k")
    assert classifier.classify("what time is it?", [])
    assert not classifier.classify("so anyway", [])


@patch("intent_classifier.dashscope")
def test_exception_falls_back(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.side_effect = ConnectionError("network down")
    assert DashscopeIntentClassifier(api_key="k").classify("why?", [])


@patch("intent_classifier.dashscope")
def test_malformed_payload_falls_back(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = {"status_code": 200, "output": {}}
    classifier = DashscopeIntentClassifier(api_key="k", trigger_phrases=("answer",))
    assert classifier.classify("please answer", [])


@patch("intent_classifier.dashscope")
def test_timeout_falls_back(mock_dashscope: MagicMock) -> None:
    def slow_call(**kwargs):  # noqa: ANN003, ANN202
        time.sleep(0.5)
        return _reply("NO")

    mock_dashscope.Generation.call.side_effect = slow_call
    classifier = DashscopeIntentClassifier(api_key="k", timeout_s=0.05)

    started = time.monotonic()
    assert classifier.classify("are we there yet?", [])
    assert time.monotonic() - started < 0.4


@patch("intent_classifier.dashscope", None)
def test_missing_sdk_falls_back() -> None:
    assert DashscopeIntentClassifier(api_key="k").classify("ready?", [])


@patch("intent_classifier.dashscope", MagicMock())
@patch.dict("os.environ", {"DASHSCOPE_API_KEY": ""}, clear=False)
def test_missing_api_key_falls_back() -> None:
    classifier = DashscopeIntentClassifier(api_key="", trigger_phrases=("respond",))
    assert classifier.classify("please respond", [])
    assert not classifier.classify("well", [])
