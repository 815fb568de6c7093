"""Tests for sessions, turn settings, trackers and the persistent state machine."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from cliweave.engine.lifecycle import VALID_TRANSITIONS, validate_transition
from cliweave.engine.models import (
    AccessLevel,
    OperationMode,
    PendingToolCall,
    PersistentState,
    ThinkingLevel,
    TurnSettings,
    UsageSnapshot,
)
from cliweave.engine.normalizers.cursor import CursorStreamState
from cliweave.engine.session import DEFAULT_PANEL_ID, SessionRegistry
from cliweave.engine.supervisor import PanelProcessTracker


def test_get_or_create_is_idempotent_and_defaults_panel():
    registry = SessionRegistry()
    a = registry.get_or_create()
    b = registry.get_or_create(None)
    c = registry.get_or_create("")
    assert a is b is c
    assert a.panel_id == DEFAULT_PANEL_ID
    assert registry.get_or_create("p2") is not a
    assert len(registry) == 2


def test_get_does_not_create():
    registry = SessionRegistry()
    assert registry.get("missing") is None
    assert len(registry) == 0


def test_has_session_tracks_continuation_token():
    registry = SessionRegistry()
    s = registry.get_or_create("p")
    assert not registry.has_session("p")
    s.session_id = "tok"
    assert registry.has_session("p")
    assert registry.get_session_id("p") == "tok"


def test_clear_one_panel_resets_token_and_state():
    registry = SessionRegistry(CursorStreamState)
    s1 = registry.get_or_create("one")
    s2 = registry.get_or_create("two")
    s1.session_id, s2.session_id = "a", "b"
    s1.stream_state.streamed_text_length = 5
    s1.pending_tools["x"] = PendingToolCall(id="x", name="read")
    s1.usage = UsageSnapshot(input_tokens=1)

    registry.clear("one")
    assert s1.session_id is None
    assert s1.stream_state.streamed_text_length == 0
    assert s1.pending_tools == {}
    assert s1.usage is None
    assert s2.session_id == "b"


def test_clear_all_panels():
    registry = SessionRegistry()
    for panel in ("a", "b"):
        registry.get_or_create(panel).session_id = panel
    registry.clear()
    assert not registry.has_session("a")
    assert not registry.has_session("b")


def test_take_usage_reads_and_clears():
    s = SessionRegistry().get_or_create()
    s.store_usage(UsageSnapshot(input_tokens=3, output_tokens=4))
    assert s.take_usage() == UsageSnapshot(input_tokens=3, output_tokens=4)
    assert s.take_usage() is None


def test_synthetic_session_id_is_not_resumable():
    s = SessionRegistry().get_or_create()
    s.session_id = "copilot-default-1"
    s.session_id_synthetic = True
    assert s.resumable_session_id is None
    s.session_id_synthetic = False
    assert s.resumable_session_id == "copilot-default-1"


def test_persistent_ready_and_clear():
    s = SessionRegistry().get_or_create()
    s.set_persistent_state(PersistentState.SPAWNING)
    s.persistent_process = object()
    s.set_persistent_state(PersistentState.READY)
    assert s.persistent_ready
    s.clear_persistent()
    assert s.persistent_state == PersistentState.DEAD
    assert s.persistent_process is None
    assert not s.persistent_ready


# ── lifecycle ──


@pytest.mark.parametrize("current,target", [
    (PersistentState.ABSENT, PersistentState.SPAWNING),
    (PersistentState.SPAWNING, PersistentState.READY),
    (PersistentState.READY, PersistentState.BUSY),
    (PersistentState.BUSY, PersistentState.READY),
    (PersistentState.BUSY, PersistentState.DEAD),
    (PersistentState.DEAD, PersistentState.SPAWNING),
])
def test_valid_transitions(current, target):
    validate_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (PersistentState.ABSENT, PersistentState.BUSY),
    (PersistentState.SPAWNING, PersistentState.BUSY),
    (PersistentState.READY, PersistentState.SPAWNING),
    (PersistentState.DEAD, PersistentState.READY),
])
def test_invalid_transitions_raise(current, target):
    with pytest.raises(ValueError, match="Invalid persistent transition"):
        validate_transition(current, target)


def test_every_state_can_die():
    for state, allowed in VALID_TRANSITIONS.items():
        assert PersistentState.DEAD in allowed, state


def test_remove_drops_session():
    registry = SessionRegistry()
    s = registry.get_or_create("gone")
    assert registry.remove("gone") is s
    assert registry.get("gone") is None
    assert registry.remove("gone") is None


# ── turn settings ──


def test_turn_settings_from_camel_case_dict():
    settings = TurnSettings.from_dict({
        "mode": "quick-plan",
        "accessLevel": "full-access",
        "thinkingLevel": "high",
        "sessionId": "abc",
        "autonomousMode": True,
    })
    assert settings.mode == OperationMode.QUICK_PLAN
    assert settings.is_plan_mode
    assert settings.access_level == AccessLevel.FULL_ACCESS
    assert settings.thinking_level == ThinkingLevel.HIGH
    assert settings.session_id == "abc"
    assert settings.autonomous_mode is True


def test_turn_settings_unknown_values_fall_back_to_defaults():
    settings = TurnSettings.from_dict({"mode": "turbo", "access_level": "read-only", "model": ""})
    assert settings.mode == OperationMode.ASK_BEFORE_EDIT
    assert settings.is_read_only
    assert settings.model is None
    assert TurnSettings.from_dict(None) == TurnSettings()


# ── process tracker ──


def test_panel_tracker_reports_live_panels():
    tracker = PanelProcessTracker()
    alive, dead = MagicMock(is_alive=True), MagicMock(is_alive=False)
    tracker.register_process("a", alive)
    tracker.register_process("b", dead)
    assert tracker.get("a") is alive
    assert tracker.active_panels() == ["a"]
    tracker.clear_process("a")
    tracker.clear_process("missing")
    assert tracker.active_panels() == []
