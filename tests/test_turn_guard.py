from sandbox_agent.agent.turn_guard import (
    BLOCKED_RETRY_HINT,
    BlockedAttemptTracker,
    SessionTurnGuards,
    render_tool_message,
)
from sandbox_agent.errors import approval_required, blocked, failure, ok


def test_three_blocked_turns_stop_the_loop():
    tracker = BlockedAttemptTracker(max_blocked=3)
    assert tracker.record_turn([blocked("no")]) is False
    assert tracker.record_turn([blocked("no"), ok("fine")]) is False
    assert tracker.record_turn([blocked("no")]) is True
    assert tracker.should_stop


def test_several_blocked_results_in_one_turn_count_individually():
    tracker = BlockedAttemptTracker(max_blocked=3)
    assert tracker.record_turn([blocked("a"), blocked("b"), blocked("c")]) is True


def test_clean_turn_resets_count():
    tracker = BlockedAttemptTracker(max_blocked=3)
    tracker.record_turn([blocked("a"), blocked("b")])
    assert tracker.record_turn([ok("x"), failure("exit 1")]) is False
    assert tracker.blocked_count == 0
    assert tracker.record_turn([blocked("c")]) is False


def test_approval_required_is_not_blocked():
    tracker = BlockedAttemptTracker(max_blocked=1)
    assert tracker.record_turn([approval_required("abc", "recursive delete")]) is False


def test_session_guards_are_independent():
    guards = SessionTurnGuards(max_blocked=2)
    guards.for_session("a").record_turn([blocked("x")])
    assert guards.for_session("a").blocked_count == 1
    assert guards.for_session("b").blocked_count == 0
    guards.reset("a")
    assert guards.for_session("a").blocked_count == 0
    assert guards.for_session("a").max_blocked == 2


def test_render_tool_message():
    assert render_tool_message(ok("hello")) == "hello"
    assert render_tool_message(ok("")) == "Done"
    assert render_tool_message(failure("Exit 1: nope")) == "Error: Exit 1: nope"

    message = render_tool_message(blocked("reading /etc is not allowed"))
    assert message.startswith("Error: 🚫 BLOCKED: reading /etc")
    assert message.endswith(BLOCKED_RETRY_HINT)
