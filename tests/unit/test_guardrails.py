"""Unit tests for the moderation guardrail."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from tests.helpers.fakes import FakeEvaluator
from voice_agents.config import ModerationConfig
from voice_agents.errors import ModerationError
from voice_agents.guardrails import (
    GuardrailGate,
    GuardrailResult,
    GuardrailVerdict,
    HttpModerationEvaluator,
    ModerationCategory,
    ModerationOutput,
    build_classifier_prompt,
    parse_classifier_response,
)
from voice_agents.recorder import Transcript


def responses_payload(category: str, rationale: str = "ok") -> dict[str, Any]:
    return {
        "output": [
            {"type": "reasoning", "content": []},
            {
                "type": "message",
                "content": [
                    {
                        "type": "output_text",
                        "text": json.dumps(
                            {"moderationCategory": category, "moderationRationale": rationale}
                        ),
                    }
                ],
            },
        ]
    }


def mock_http_session(status: int, body: dict[str, Any]) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=body)
    resp.text = AsyncMock(return_value=json.dumps(body))

    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=resp)
    cm.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.post = MagicMock(return_value=cm)
    return session


def test_moderation_output_tripped() -> None:
    """Test only non-NONE categories trip the guardrail."""
    assert ModerationOutput().tripped is False
    assert ModerationOutput(category=ModerationCategory.VIOLENCE).tripped is True


def test_result_from_output() -> None:
    """Test verdict derivation from a classifier answer."""
    passed = GuardrailResult.from_output(ModerationOutput(tested_text="hi"))
    failed = GuardrailResult.from_output(
        ModerationOutput(category=ModerationCategory.OFF_BRAND, rationale="mocks rival")
    )

    assert passed.verdict is GuardrailVerdict.PASS
    assert passed.rationale is None
    assert failed.verdict is GuardrailVerdict.FAIL
    assert failed.category is ModerationCategory.OFF_BRAND
    assert failed.rationale == "mocks rival"


def test_parse_output_text() -> None:
    """Test parsing the raw responses message list."""
    output = parse_classifier_response(responses_payload("OFFENSIVE", "insult"))

    assert output.category is ModerationCategory.OFFENSIVE
    assert output.rationale == "insult"


def test_parse_output_parsed() -> None:
    """Test a pre-parsed classification is accepted."""
    output = parse_classifier_response(
        {"output_parsed": {"moderationCategory": "NONE", "moderationRationale": "fine"}}
    )

    assert output.tripped is False


def test_parse_malformed_response() -> None:
    """Test malformed payloads raise ModerationError."""
    with pytest.raises(ModerationError):
        parse_classifier_response({"output": []})

    with pytest.raises(ModerationError):
        parse_classifier_response(responses_payload("SPAM"))


def test_classifier_prompt_names_policy() -> None:
    """Test the prompt carries the policy and message."""
    prompt = build_classifier_prompt("Hello", "Acme Corp")

    assert "Company name: Acme Corp" in prompt
    assert "<message>\nHello\n</message>" in prompt
    assert "OFF_BRAND" in prompt


@pytest.mark.asyncio
async def test_http_evaluator_classifies() -> None:
    """Test the HTTP evaluator posts the prompt and parses the answer."""
    session = mock_http_session(200, responses_payload("VIOLENCE", "threat"))
    evaluator = HttpModerationEvaluator(
        ModerationConfig(url="http://mod.test/v1/responses", api_key="sk-test"), session=session
    )

    output = await evaluator.classify("I will hurt you", "Acme Corp")

    assert output.category is ModerationCategory.VIOLENCE
    assert output.tested_text == "I will hurt you"
    args, kwargs = session.post.call_args
    assert args[0] == "http://mod.test/v1/responses"
    assert kwargs["headers"] == {"Authorization": "Bearer sk-test"}
    assert kwargs["json"]["text"]["format"]["type"] == "json_schema"


@pytest.mark.asyncio
async def test_http_evaluator_http_error() -> None:
    """Test HTTP errors become ModerationError."""
    session = mock_http_session(500, {"error": "boom"})
    evaluator = HttpModerationEvaluator(ModerationConfig(), session=session)

    with pytest.raises(ModerationError, match="HTTP 500"):
        await evaluator.classify("Hello", "Acme Corp")


@pytest.mark.asyncio
async def test_http_evaluator_client_error() -> None:
    """Test connection errors become ModerationError."""
    session = MagicMock()
    session.closed = False
    session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
    evaluator = HttpModerationEvaluator(ModerationConfig(), session=session)

    with pytest.raises(ModerationError, match="request failed"):
        await evaluator.classify("Hello", "Acme Corp")


@pytest.mark.asyncio
async def test_gate_uses_policy_name() -> None:
    """Test the gate classifies under its policy."""
    evaluator = FakeEvaluator()
    gate = GuardrailGate("Acme Corp", evaluator, Transcript())

    output = await gate("Hello")

    assert output.tripped is False
    assert evaluator.calls == [("Hello", "Acme Corp")]


def test_gate_mark_pending_and_verdict() -> None:
    """Test pending marking and verdict merging."""
    transcript = Transcript()
    transcript.add_message("m1", "agent", "Hello")
    gate = GuardrailGate("Acme Corp", FakeEvaluator(), transcript)

    assert gate.mark_pending("m1") is True
    item = transcript.get("m1")
    assert item is not None and item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.PENDING

    result = gate.record_verdict("m1", ModerationOutput(category=ModerationCategory.OFFENSIVE))
    assert result.verdict is GuardrailVerdict.FAIL
    assert item.guardrail is result


def test_gate_late_finalization_keeps_verdict() -> None:
    """Test a verdict that arrived first is not reset to PENDING."""
    transcript = Transcript()
    transcript.add_message("m1", "agent", "Hello")
    gate = GuardrailGate("Acme Corp", FakeEvaluator(), transcript)

    gate.record_verdict("m1", ModerationOutput())

    assert gate.mark_pending("m1") is False
    item = transcript.get("m1")
    assert item is not None and item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.PASS


def test_gate_feedback_message() -> None:
    """Test the corrective instruction names the category."""
    gate = GuardrailGate("Acme Corp", FakeEvaluator(), Transcript())

    message = gate.feedback_message(
        ModerationOutput(category=ModerationCategory.OFF_BRAND, rationale="mocks rival")
    )

    assert "OFF_BRAND" in message
    assert "mocks rival" in message
