from __future__ import annotations

from dataclasses import replace

from edge_voice.runtime.transitions import (
    EffectKind,
    Event,
    EventKind,
    Snapshot,
    Timing,
    can_send,
    transition,
)
from edge_voice.state.app_state import SessionState

TIMING = Timing()


def _kinds(effects) -> list[EffectKind]:
    return [effect.kind for effect in effects]


def _listening(**changes) -> Snapshot:
    return replace(Snapshot(state=SessionState.LISTENING, voice_enabled=True), **changes)


def test_transcript_starts_turn_in_order() -> None:
    snapshot, effects = transition(
        _listening(), Event(EventKind.FINAL_TRANSCRIPT, text=" Hello "), now=3.0, timing=TIMING
    )
    assert snapshot.state is SessionState.THINKING
    assert snapshot.pending and snapshot.last_send_at == 3.0
    assert _kinds(effects) == [EffectKind.STOP_INPUT, EffectKind.APPEND_USER, EffectKind.SEND_REQUEST]
    assert effects[1].text == "Hello"


def test_duplicate_transcript_is_dropped() -> None:
    first, _ = transition(_listening(), Event(EventKind.FINAL_TRANSCRIPT, text="Hello"), now=0.0, timing=TIMING)
    back = replace(first, state=SessionState.LISTENING, pending=False)
    again, effects = transition(back, Event(EventKind.FINAL_TRANSCRIPT, text="Hello"), now=10.0, timing=TIMING)
    assert again.state is SessionState.LISTENING
    assert effects == []


def test_empty_transcript_is_ignored() -> None:
    snapshot = _listening()
    assert transition(snapshot, Event(EventKind.FINAL_TRANSCRIPT, text="   "), now=0.0, timing=TIMING) == (snapshot, [])


def test_transcript_outside_listening_is_ignored() -> None:
    snapshot = Snapshot(state=SessionState.SPEAKING, voice_enabled=True)
    result, effects = transition(snapshot, Event(EventKind.FINAL_TRANSCRIPT, text="hi"), now=0.0, timing=TIMING)
    assert result is snapshot and effects == []


def test_admission_control() -> None:
    snapshot = Snapshot(last_send_at=10.0)
    assert not can_send(snapshot, 10.5, TIMING)
    assert can_send(snapshot, 11.1, TIMING)
    assert not can_send(replace(snapshot, pending=True), 50.0, TIMING)
    assert can_send(Snapshot(), 0.0, TIMING)


def test_text_inside_spacing_is_dropped() -> None:
    snapshot = Snapshot(last_send_at=1.0)
    result, effects = transition(snapshot, Event(EventKind.TEXT_SUBMITTED, text="hi"), now=1.5, timing=TIMING)
    assert result is snapshot and effects == []


def test_reply_speaks_when_enabled() -> None:
    thinking = Snapshot(state=SessionState.THINKING, pending=True)
    snapshot, effects = transition(thinking, Event(EventKind.REPLY_RECEIVED, text="Hi"), now=1.0, timing=TIMING)
    assert snapshot.state is SessionState.SPEAKING and not snapshot.pending
    assert _kinds(effects) == [EffectKind.APPEND_ASSISTANT, EffectKind.SPEAK, EffectKind.START_MONITOR]


def test_reply_waits_when_muted() -> None:
    thinking = Snapshot(state=SessionState.THINKING, pending=True, speech_enabled=False, voice_enabled=True)
    snapshot, effects = transition(thinking, Event(EventKind.REPLY_RECEIVED, text="Hi"), now=1.0, timing=TIMING)
    assert snapshot.state is SessionState.WAITING
    resume = effects[-1]
    assert resume.kind is EffectKind.SCHEDULE_RESUME
    assert resume.delay == TIMING.reply_cooldown
    assert resume.token == snapshot.generation


def test_reply_without_pending_request_is_ignored() -> None:
    snapshot = Snapshot(state=SessionState.IDLE)
    assert transition(snapshot, Event(EventKind.REPLY_RECEIVED, text="late"), now=0.0, timing=TIMING) == (snapshot, [])


def test_barge_in_only_while_speaking() -> None:
    speaking = Snapshot(state=SessionState.SPEAKING, voice_enabled=True)
    snapshot, effects = transition(speaking, Event(EventKind.BARGE_IN), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.INTERRUPTED
    assert _kinds(effects) == [EffectKind.CANCEL_SPEECH, EffectKind.STOP_MONITOR, EffectKind.SCHEDULE_RESUME]
    assert effects[-1].delay == TIMING.interrupt_settle

    listening = _listening()
    assert transition(listening, Event(EventKind.BARGE_IN), now=0.0, timing=TIMING) == (listening, [])


def test_speech_end_after_interrupt_is_suppressed() -> None:
    interrupted = Snapshot(state=SessionState.INTERRUPTED, voice_enabled=True)
    assert transition(interrupted, Event(EventKind.SPEECH_ENDED), now=0.0, timing=TIMING) == (interrupted, [])


def test_stale_resume_is_ignored() -> None:
    speaking = Snapshot(state=SessionState.SPEAKING, voice_enabled=True)
    waiting, effects = transition(speaking, Event(EventKind.SPEECH_ENDED), now=0.0, timing=TIMING)
    token = effects[-1].token
    thinking, _ = transition(waiting, Event(EventKind.TEXT_SUBMITTED, text="hi"), now=5.0, timing=TIMING)
    result, effects = transition(thinking, Event(EventKind.RESUME, token=token), now=5.5, timing=TIMING)
    assert result.state is SessionState.THINKING
    assert effects == []


def test_resume_goes_to_listening_or_idle() -> None:
    waiting = Snapshot(state=SessionState.WAITING, voice_enabled=True, generation=4)
    snapshot, effects = transition(waiting, Event(EventKind.RESUME, token=4), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.LISTENING
    assert _kinds(effects) == [EffectKind.START_INPUT]

    waiting = replace(waiting, voice_enabled=False)
    snapshot, effects = transition(waiting, Event(EventKind.RESUME, token=4), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.IDLE and effects == []


def test_failure_goes_idle_then_resumes() -> None:
    thinking = Snapshot(state=SessionState.THINKING, pending=True, voice_enabled=True)
    snapshot, effects = transition(thinking, Event(EventKind.REQUEST_FAILED, text="boom"), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.IDLE
    assert _kinds(effects) == [EffectKind.APPEND_ERROR, EffectKind.SCHEDULE_RESUME]


def test_permission_denied_from_any_state() -> None:
    for state in SessionState:
        snapshot = Snapshot(state=state, voice_enabled=True)
        blocked, effects = transition(snapshot, Event(EventKind.PERMISSION_DENIED), now=0.0, timing=TIMING)
        assert blocked.state is SessionState.PERMISSION_BLOCKED
        assert blocked.blocked
        assert EffectKind.RELEASE_CAPTURE in _kinds(effects)
        assert EffectKind.START_INPUT not in _kinds(effects)


def test_blocked_ignores_voice_and_resume() -> None:
    blocked = Snapshot(state=SessionState.PERMISSION_BLOCKED, voice_enabled=True, blocked=True, generation=2)
    for event in (
        Event(EventKind.VOICE_ENABLED),
        Event(EventKind.INPUT_READY),
        Event(EventKind.RESUME, token=2),
    ):
        assert transition(blocked, event, now=0.0, timing=TIMING) == (blocked, [])


def test_retry_permission_reacquires() -> None:
    blocked = Snapshot(state=SessionState.PERMISSION_BLOCKED, voice_enabled=True, blocked=True)
    snapshot, effects = transition(blocked, Event(EventKind.RETRY_PERMISSION), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.IDLE and not snapshot.blocked
    assert _kinds(effects) == [EffectKind.ACQUIRE_CAPTURE]
    ready, effects = transition(snapshot, Event(EventKind.INPUT_READY), now=0.0, timing=TIMING)
    assert ready.state is SessionState.LISTENING
    assert _kinds(effects) == [EffectKind.START_INPUT]


def test_stop_resets_session() -> None:
    thinking = Snapshot(state=SessionState.THINKING, pending=True, voice_enabled=True, last_transcript="x")
    snapshot, effects = transition(thinking, Event(EventKind.STOP), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.IDLE
    assert not snapshot.pending and not snapshot.voice_enabled and snapshot.last_transcript is None
    assert _kinds(effects)[0] is EffectKind.CANCEL_REQUEST


def test_same_transcript_accepted_after_reply() -> None:
    thinking, _ = transition(_listening(), Event(EventKind.FINAL_TRANSCRIPT, text="yes"), now=0.0, timing=TIMING)
    speaking, _ = transition(thinking, Event(EventKind.REPLY_RECEIVED, text="Sure?"), now=1.0, timing=TIMING)
    assert speaking.last_transcript is None
    listening = replace(speaking, state=SessionState.LISTENING)
    snapshot, effects = transition(listening, Event(EventKind.FINAL_TRANSCRIPT, text="yes"), now=5.0, timing=TIMING)
    assert snapshot.state is SessionState.THINKING
    assert EffectKind.SEND_REQUEST in _kinds(effects)


def test_failed_request_clears_last_transcript() -> None:
    thinking = Snapshot(state=SessionState.THINKING, pending=True, voice_enabled=True, last_transcript="yes")
    snapshot, _ = transition(thinking, Event(EventKind.REQUEST_FAILED, text="boom"), now=0.0, timing=TIMING)
    assert snapshot.last_transcript is None


def test_recognition_exhaustion_leaves_listening() -> None:
    snapshot, effects = transition(_listening(), Event(EventKind.SOFT_WARNING, text="typing only"), now=0.0, timing=TIMING)
    assert snapshot.state is SessionState.IDLE
    assert snapshot.voice_enabled
    assert _kinds(effects) == [EffectKind.STOP_INPUT, EffectKind.SURFACE_WARNING]

    speaking = Snapshot(state=SessionState.SPEAKING, voice_enabled=True)
    unchanged, effects = transition(speaking, Event(EventKind.SOFT_WARNING, text="x"), now=0.0, timing=TIMING)
    assert unchanged is speaking
    assert _kinds(effects) == [EffectKind.SURFACE_WARNING]
