"""Turn-taking state machine.

``transition(snapshot, event, now=..., timing=...)`` is pure: it returns the
next snapshot and the effects the controller must run, in order. It never
touches audio, the network or timers itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..config.settings import TurnSettings
from ..state.app_state import SessionState


PERMISSION_WARNING = "Microphone access was denied. Type your message or retry the microphone."


class EventKind(str, Enum):
    VOICE_ENABLED = "voice_enabled"
    VOICE_DISABLED = "voice_disabled"
    INPUT_READY = "input_ready"
    FINAL_TRANSCRIPT = "final_transcript"
    TEXT_SUBMITTED = "text_submitted"
    TEXT_FOCUS = "text_focus"
    REPLY_RECEIVED = "reply_received"
    REQUEST_FAILED = "request_failed"
    SPEECH_STARTED = "speech_started"
    SPEECH_ENDED = "speech_ended"
    BARGE_IN = "barge_in"
    PERMISSION_DENIED = "permission_denied"
    RETRY_PERMISSION = "retry_permission"
    SOFT_WARNING = "soft_warning"
    RESUME = "resume"
    SET_SPEECH_OUTPUT = "set_speech_output"
    STOP = "stop"


class EffectKind(str, Enum):
    START_INPUT = "start_input"
    STOP_INPUT = "stop_input"
    APPEND_USER = "append_user"
    APPEND_ASSISTANT = "append_assistant"
    APPEND_ERROR = "append_error"
    SEND_REQUEST = "send_request"
    CANCEL_REQUEST = "cancel_request"
    SPEAK = "speak"
    CANCEL_SPEECH = "cancel_speech"
    ACQUIRE_CAPTURE = "acquire_capture"
    RELEASE_CAPTURE = "release_capture"
    START_MONITOR = "start_monitor"
    STOP_MONITOR = "stop_monitor"
    SCHEDULE_RESUME = "schedule_resume"
    SURFACE_WARNING = "surface_warning"


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    text: str | None = None
    flag: bool = False
    token: int = 0


@dataclass(frozen=True, slots=True)
class Effect:
    kind: EffectKind
    text: str | None = None
    delay: float = 0.0
    token: int = 0


@dataclass(frozen=True, slots=True)
class Timing:
    """Delays (seconds) applied by the state machine."""

    min_send_spacing: float = 1.1
    speech_cooldown: float = 0.35
    reply_cooldown: float = 0.5
    interrupt_settle: float = 0.6

    @classmethod
    def from_settings(cls, settings: TurnSettings) -> "Timing":
        return cls(
            min_send_spacing=settings.min_send_spacing,
            speech_cooldown=settings.speech_cooldown,
            reply_cooldown=settings.reply_cooldown,
            interrupt_settle=settings.interrupt_settle,
        )


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Everything the state machine knows about the session.

    ``generation`` changes on every state change; a resume timer carries the
    generation it was scheduled in and is ignored once it no longer matches.
    ``last_transcript`` only suppresses a re-fired transcript within one turn.
    """

    state: SessionState = SessionState.IDLE
    voice_enabled: bool = False
    speech_enabled: bool = True
    blocked: bool = False
    pending: bool = False
    last_send_at: float | None = None
    last_transcript: str | None = None
    generation: int = 0


Result = tuple[Snapshot, list[Effect]]


def transition(snapshot: Snapshot, event: Event, *, now: float, timing: Timing) -> Result:
    """Apply ``event`` to ``snapshot``; unknown or out-of-place events are no-ops."""
    handler = _HANDLERS.get(event.kind)
    if handler is None:
        return snapshot, []
    return handler(snapshot, event, now, timing)


def can_send(snapshot: Snapshot, now: float, timing: Timing) -> bool:
    """Admission control: one request in flight and a minimum spacing between sends."""
    if snapshot.pending:
        return False
    if snapshot.last_send_at is None:
        return True
    return now - snapshot.last_send_at >= timing.min_send_spacing


# ---------------------------------------------------------------------- #
# Helpers
# ---------------------------------------------------------------------- #
def _enter(snapshot: Snapshot, state: SessionState, **changes) -> Snapshot:
    return replace(snapshot, state=state, generation=snapshot.generation + 1, **changes)


def _resume_target(snapshot: Snapshot) -> SessionState:
    if snapshot.blocked:
        return SessionState.PERMISSION_BLOCKED
    if snapshot.voice_enabled:
        return SessionState.LISTENING
    return SessionState.IDLE


def _resume_later(snapshot: Snapshot, delay: float) -> Effect:
    return Effect(EffectKind.SCHEDULE_RESUME, delay=delay, token=snapshot.generation)


def _begin_turn(snapshot: Snapshot, text: str, now: float, effects: list[Effect]) -> Result:
    snapshot = _enter(snapshot, SessionState.THINKING, pending=True, last_send_at=now)
    effects += [
        Effect(EffectKind.STOP_INPUT),
        Effect(EffectKind.APPEND_USER, text=text),
        Effect(EffectKind.SEND_REQUEST),
    ]
    return snapshot, effects


def _interrupt(snapshot: Snapshot, timing: Timing) -> Result:
    snapshot = _enter(snapshot, SessionState.INTERRUPTED)
    return snapshot, [
        Effect(EffectKind.CANCEL_SPEECH),
        Effect(EffectKind.STOP_MONITOR),
        _resume_later(snapshot, timing.interrupt_settle),
    ]


def _after_speech(snapshot: Snapshot, timing: Timing, effects: list[Effect]) -> Result:
    if snapshot.voice_enabled and not snapshot.blocked:
        snapshot = _enter(snapshot, SessionState.WAITING)
        effects.append(_resume_later(snapshot, timing.speech_cooldown))
        return snapshot, effects
    return _enter(snapshot, _resume_target(snapshot)), effects


# ---------------------------------------------------------------------- #
# Handlers
# ---------------------------------------------------------------------- #
def _on_voice_enabled(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if snapshot.voice_enabled or snapshot.blocked:
        return snapshot, []
    return replace(snapshot, voice_enabled=True), [Effect(EffectKind.ACQUIRE_CAPTURE)]


def _on_input_ready(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if not snapshot.voice_enabled or snapshot.blocked or snapshot.state is not SessionState.IDLE:
        return snapshot, []
    return _enter(snapshot, SessionState.LISTENING), [Effect(EffectKind.START_INPUT)]


def _on_voice_disabled(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if not snapshot.voice_enabled:
        return snapshot, []
    effects = [Effect(EffectKind.STOP_INPUT), Effect(EffectKind.RELEASE_CAPTURE)]
    if snapshot.state is SessionState.LISTENING:
        return _enter(snapshot, SessionState.IDLE, voice_enabled=False), effects
    return replace(snapshot, voice_enabled=False), effects


def _on_final_transcript(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    text = (event.text or "").strip()
    if not text or snapshot.state is not SessionState.LISTENING:
        return snapshot, []
    if text == snapshot.last_transcript:
        return snapshot, []
    snapshot = replace(snapshot, last_transcript=text)
    if not can_send(snapshot, now, timing):
        return snapshot, []
    return _begin_turn(snapshot, text, now, [])


def _on_text_submitted(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    text = (event.text or "").strip()
    if not text or not can_send(snapshot, now, timing):
        return snapshot, []
    effects: list[Effect] = []
    if snapshot.state is SessionState.SPEAKING:
        effects += [Effect(EffectKind.CANCEL_SPEECH), Effect(EffectKind.STOP_MONITOR)]
    return _begin_turn(snapshot, text, now, effects)


def _on_text_focus(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if snapshot.state is not SessionState.SPEAKING:
        return snapshot, []
    return _interrupt(snapshot, timing)


def _on_reply(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if not snapshot.pending:
        return snapshot, []
    text = event.text or ""
    snapshot = replace(snapshot, pending=False, last_transcript=None)
    effects = [Effect(EffectKind.APPEND_ASSISTANT, text=text)]
    if snapshot.state is not SessionState.THINKING:
        return snapshot, effects
    if snapshot.speech_enabled:
        snapshot = _enter(snapshot, SessionState.SPEAKING)
        effects += [Effect(EffectKind.SPEAK, text=text), Effect(EffectKind.START_MONITOR)]
        return snapshot, effects
    snapshot = _enter(snapshot, SessionState.WAITING)
    effects.append(_resume_later(snapshot, timing.reply_cooldown))
    return snapshot, effects


def _on_request_failed(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if not snapshot.pending:
        return snapshot, []
    snapshot = replace(snapshot, pending=False, last_transcript=None)
    effects = [Effect(EffectKind.APPEND_ERROR, text=event.text)]
    if snapshot.state is not SessionState.THINKING:
        return snapshot, effects
    if snapshot.blocked:
        return _enter(snapshot, SessionState.PERMISSION_BLOCKED), effects
    snapshot = _enter(snapshot, SessionState.IDLE)
    if snapshot.voice_enabled:
        effects.append(_resume_later(snapshot, timing.reply_cooldown))
    return snapshot, effects


def _on_speech_ended(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if snapshot.state is not SessionState.SPEAKING:
        return snapshot, []
    return _after_speech(snapshot, timing, [Effect(EffectKind.STOP_MONITOR)])


def _on_barge_in(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if snapshot.state is not SessionState.SPEAKING:
        return snapshot, []
    return _interrupt(snapshot, timing)


def _on_permission_denied(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    effects: list[Effect] = []
    if snapshot.state is SessionState.SPEAKING:
        effects += [Effect(EffectKind.CANCEL_SPEECH), Effect(EffectKind.STOP_MONITOR)]
    effects += [
        Effect(EffectKind.STOP_INPUT),
        Effect(EffectKind.RELEASE_CAPTURE),
        Effect(EffectKind.SURFACE_WARNING, text=PERMISSION_WARNING),
    ]
    if snapshot.state is SessionState.PERMISSION_BLOCKED:
        return replace(snapshot, blocked=True), effects
    return _enter(snapshot, SessionState.PERMISSION_BLOCKED, blocked=True), effects


def _on_retry_permission(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if not snapshot.blocked:
        return snapshot, []
    effects = [Effect(EffectKind.ACQUIRE_CAPTURE)]
    if snapshot.state is SessionState.PERMISSION_BLOCKED:
        return _enter(snapshot, SessionState.IDLE, blocked=False, voice_enabled=True), effects
    return replace(snapshot, blocked=False, voice_enabled=True), effects


def _on_soft_warning(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    effects = [Effect(EffectKind.SURFACE_WARNING, text=event.text)]
    if snapshot.state is not SessionState.LISTENING:
        return snapshot, effects
    # Voice mode stays on: the next resume after a typed turn restarts recognition.
    return _enter(snapshot, SessionState.IDLE), [Effect(EffectKind.STOP_INPUT), *effects]


def _on_resume(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    if event.token != snapshot.generation:
        return snapshot, []
    if snapshot.state not in (SessionState.WAITING, SessionState.INTERRUPTED, SessionState.IDLE):
        return snapshot, []
    target = _resume_target(snapshot)
    if target is snapshot.state:
        return snapshot, []
    snapshot = _enter(snapshot, target)
    if target is SessionState.LISTENING:
        return snapshot, [Effect(EffectKind.START_INPUT)]
    return snapshot, []


def _on_set_speech_output(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    snapshot = replace(snapshot, speech_enabled=event.flag)
    if event.flag or snapshot.state is not SessionState.SPEAKING:
        return snapshot, []
    return _after_speech(
        snapshot, timing, [Effect(EffectKind.CANCEL_SPEECH), Effect(EffectKind.STOP_MONITOR)]
    )


def _on_stop(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    effects: list[Effect] = []
    if snapshot.pending:
        effects.append(Effect(EffectKind.CANCEL_REQUEST))
    effects += [
        Effect(EffectKind.CANCEL_SPEECH),
        Effect(EffectKind.STOP_MONITOR),
        Effect(EffectKind.STOP_INPUT),
        Effect(EffectKind.RELEASE_CAPTURE),
    ]
    stopped = Snapshot(
        speech_enabled=snapshot.speech_enabled,
        last_send_at=snapshot.last_send_at,
        generation=snapshot.generation + 1,
    )
    return stopped, effects


def _ignore(snapshot: Snapshot, event: Event, now: float, timing: Timing) -> Result:
    return snapshot, []


_HANDLERS = {
    EventKind.VOICE_ENABLED: _on_voice_enabled,
    EventKind.VOICE_DISABLED: _on_voice_disabled,
    EventKind.INPUT_READY: _on_input_ready,
    EventKind.FINAL_TRANSCRIPT: _on_final_transcript,
    EventKind.TEXT_SUBMITTED: _on_text_submitted,
    EventKind.TEXT_FOCUS: _on_text_focus,
    EventKind.REPLY_RECEIVED: _on_reply,
    EventKind.REQUEST_FAILED: _on_request_failed,
    EventKind.SPEECH_STARTED: _ignore,
    EventKind.SPEECH_ENDED: _on_speech_ended,
    EventKind.BARGE_IN: _on_barge_in,
    EventKind.PERMISSION_DENIED: _on_permission_denied,
    EventKind.RETRY_PERMISSION: _on_retry_permission,
    EventKind.SOFT_WARNING: _on_soft_warning,
    EventKind.RESUME: _on_resume,
    EventKind.SET_SPEECH_OUTPUT: _on_set_speech_output,
    EventKind.STOP: _on_stop,
}
