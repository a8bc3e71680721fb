"""Unit tests for HandoffRouter."""

from tests.helpers.fakes import make_agent_set
from voice_agents.handoff import HandoffRouter


def test_first_agent_active_by_default() -> None:
    """Test the first agent of the set starts active."""
    router = HandoffRouter(make_agent_set())

    assert router.active_agent_name == "A"
    assert router.handoff_pending is False


def test_initial_selection() -> None:
    """Test a requested initial agent is selected."""
    assert HandoffRouter(make_agent_set(), "B").active_agent_name == "B"
    assert HandoffRouter(make_agent_set(), "Z").active_agent_name == "A"


def test_handoff_sets_latch_once() -> None:
    """Test the latch is consumed by exactly one read."""
    router = HandoffRouter(make_agent_set())

    assert router.on_handoff("B") is True
    assert router.active_agent_name == "B"
    assert router.consume_handoff() is True
    assert router.consume_handoff() is False


def test_unknown_handoff_ignored() -> None:
    """Test handoffs outside the set change nothing."""
    router = HandoffRouter(make_agent_set())

    assert router.on_handoff("Stranger") is False
    assert router.active_agent_name == "A"
    assert router.handoff_pending is False


def test_discard_drops_latch() -> None:
    """Test discarding a stale latch."""
    router = HandoffRouter(make_agent_set())
    router.on_handoff("B")

    router.discard()

    assert router.consume_handoff() is False
    assert router.active_agent_name == "B"


def test_select_does_not_latch() -> None:
    """Test user selection is not a handoff."""
    router = HandoffRouter(make_agent_set())

    assert router.select("B") is True
    assert router.handoff_pending is False
    assert router.select("Z") is False
    assert router.active_agent_name == "B"


def test_reset_switches_agent_set() -> None:
    """Test switching sets activates the new set's first agent."""
    router = HandoffRouter(make_agent_set())
    router.on_handoff("B")
    other = make_agent_set("other", "Globex")

    router.reset(other)

    assert router.agent_set is other
    assert router.active_agent_name == "A"
    assert router.handoff_pending is False
