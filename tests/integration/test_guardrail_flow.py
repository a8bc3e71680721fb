"""Integration tests for moderation verdicts on agent messages."""

import pytest

from tests.helpers.fakes import FakeEvaluator, FakeTransport
from voice_agents.guardrails import GuardrailVerdict, ModerationCategory, ModerationOutput
from voice_agents.recorder import ItemStatus
from voice_agents.session import SessionController
from voice_agents.transport.notifications import (
    GuardrailEvaluated,
    HistoryItemAdded,
    TranscriptDelta,
    TranscriptDone,
)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def stream_agent_message(
    controller: SessionController, transport: FakeTransport, item_id: str, text: str
) -> None:
    transport.notify(HistoryItemAdded(item_id, "agent"))
    for word in text.split(" "):
        transport.notify(TranscriptDelta(item_id, word + " "))
    transport.notify(TranscriptDone(item_id, "agent", text))
    await controller.drain()


@pytest.fixture
def offensive() -> ModerationOutput:
    return ModerationOutput(
        category=ModerationCategory.OFFENSIVE,
        rationale="Insults the user",
        tested_text="You are hopeless",
    )


async def test_finalized_agent_message_is_pending(
    controller: SessionController, transport: FakeTransport
) -> None:
    """Test a finalized agent message awaits its verdict as PENDING."""
    await controller.connect()
    await controller.drain()

    await stream_agent_message(controller, transport, "msg_1", "Hello there")

    item = controller.recorder.transcript.get("msg_1")
    assert item is not None
    assert item.title == "Hello there"
    assert item.status is ItemStatus.DONE
    assert item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.PENDING


async def test_pass_verdict_merged(
    controller: SessionController, transport: FakeTransport
) -> None:
    """Test a passing verdict is merged without any corrective turn."""
    await controller.connect()
    await controller.drain()
    await stream_agent_message(controller, transport, "msg_1", "Hello there")
    transport.events.clear()
    transport.calls.clear()

    transport.notify(GuardrailEvaluated("msg_1", ModerationOutput(tested_text="Hello there")))
    await controller.drain()

    item = controller.recorder.transcript.get("msg_1")
    assert item is not None and item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.PASS
    assert transport.events == []
    assert transport.calls == []


async def test_fail_verdict_keeps_message(
    controller: SessionController, transport: FakeTransport, offensive: ModerationOutput
) -> None:
    """Test a failed message stays in the transcript marked FAIL with its category."""
    await controller.connect()
    await controller.drain()
    await stream_agent_message(controller, transport, "msg_1", "You are hopeless")

    transport.notify(GuardrailEvaluated("msg_1", offensive))
    await controller.drain()

    item = controller.recorder.transcript.get("msg_1")
    assert item is not None
    assert item.title == "You are hopeless"
    assert item in controller.recorder.transcript.visible_items
    assert item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.FAIL
    assert item.guardrail.category is ModerationCategory.OFFENSIVE
    assert item.guardrail.rationale == "Insults the user"


async def test_fail_verdict_substitutes_refusal(
    controller: SessionController, transport: FakeTransport, offensive: ModerationOutput
) -> None:
    """Test a failed message interrupts the agent and asks for a compliant answer."""
    await controller.connect()
    await controller.drain()
    await stream_agent_message(controller, transport, "msg_1", "You are hopeless")
    transport.events.clear()
    transport.calls.clear()

    transport.notify(GuardrailEvaluated("msg_1", offensive))
    await controller.drain()

    assert transport.calls == ["interrupt"]
    assert transport.event_types == ["conversation.item.create", "response.create"]
    item = transport.events[0]["item"]
    assert item["role"] == "system"
    assert "OFFENSIVE" in item["content"][0]["text"]


async def test_fail_verdict_after_disconnect_only_marks(
    controller: SessionController, transport: FakeTransport, offensive: ModerationOutput
) -> None:
    """Test a late failing verdict still marks the message but sends nothing."""
    await controller.connect()
    await controller.drain()
    await stream_agent_message(controller, transport, "msg_1", "You are hopeless")
    await controller.disconnect()
    transport.events.clear()

    transport.notify(GuardrailEvaluated("msg_1", offensive))
    await controller.drain()

    item = controller.recorder.transcript.get("msg_1")
    assert item is not None and item.guardrail is not None
    assert item.guardrail.verdict is GuardrailVerdict.FAIL
    assert transport.events == []


async def test_verdict_for_unknown_message_creates_nothing(
    controller: SessionController, transport: FakeTransport, offensive: ModerationOutput
) -> None:
    """Test the gate never creates transcript items."""
    await controller.connect()
    await controller.drain()
    before = len(controller.recorder.transcript)

    transport.notify(GuardrailEvaluated("missing", offensive))
    await controller.drain()

    assert len(controller.recorder.transcript) == before
    assert "missing" not in controller.recorder.transcript


async def test_user_messages_are_not_moderated(
    controller: SessionController, transport: FakeTransport
) -> None:
    """Test finalized user transcripts do not get a guardrail verdict."""
    await controller.connect()
    await controller.drain()

    transport.notify(HistoryItemAdded("user_1", "user"))
    transport.notify(TranscriptDone("user_1", "user", "what's up"))
    await controller.drain()

    item = controller.recorder.transcript.get("user_1")
    assert item is not None
    assert item.title == "what's up"
    assert item.guardrail is None


async def test_classifier_failure_passes_message(
    controller: SessionController, transport: FakeTransport, evaluator: FakeEvaluator
) -> None:
    """Test a broken classifier lets the message through."""
    evaluator.error = RuntimeError("classifier down")
    await controller.connect()
    await controller.drain()
    assert transport.connect_args is not None
    gate = transport.connect_args["output_filters"][0]

    output = await gate("Hello")

    assert output.tripped is False
    assert output.error == "guardrail_failed"
