"""Turn-taking controller: runs the state machine against real capabilities."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Callable, Optional, Protocol, Sequence

from ..audio.capabilities import Capabilities, CapturePermissionError
from ..audio.vad import VoiceActivityMonitor
from ..services.errors import CompletionError
from ..services.schemas import CompletionReply, ConversationTurn
from ..state.app_state import STATUS_TEXT, AppState, ConversationHistory, SessionState
from .speech_input import RESTART_EXHAUSTED, SpeechInputSession
from .speech_output import SpeechOutputSession
from .timers import LoopScheduler, Scheduler, TimerHandle
from .transitions import Effect, EffectKind, Event, EventKind, Snapshot, Timing, transition

LOGGER = logging.getLogger(__name__)

RECOGNITION_WARNING = "Speech recognition keeps failing. You can still type your messages."

StatusCallback = Callable[[SessionState, str], None]
TurnCallback = Callable[[ConversationTurn], None]
WarningCallback = Callable[[str], None]


class CompletionBackend(Protocol):
    async def send(self, history: Sequence[ConversationTurn]) -> CompletionReply: ...


class TurnController:
    """Coordinate recognition, synthesis, barge-in and requests as one session.

    Every input (user action, platform callback, timer, network result) is
    turned into an :class:`Event` and queued. Events are applied one at a
    time by :func:`transition`; the resulting effects are executed before the
    next event is taken, so a callback fired while an effect runs is handled
    after the current transition completes.
    """

    def __init__(
        self,
        state: AppState,
        capabilities: Capabilities,
        completion: CompletionBackend,
        *,
        scheduler: Scheduler | None = None,
        on_status: Optional[StatusCallback] = None,
        on_turn: Optional[TurnCallback] = None,
        on_warning: Optional[WarningCallback] = None,
    ) -> None:
        settings = state.settings
        self.state = state
        self.completion = completion
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self.timing = Timing.from_settings(settings.turns)
        self.on_status = on_status
        self.on_turn = on_turn
        self.on_warning = on_warning

        recognition = settings.recognition
        self.input = SpeechInputSession(
            capabilities.recognition,
            self.scheduler,
            should_listen=lambda: self.snapshot.state is SessionState.LISTENING,
            restart_delay=recognition.restart_delay,
            busy_extra_delay=recognition.busy_extra_delay,
            max_backoff=recognition.max_backoff,
            max_soft_failures=recognition.max_soft_failures,
        )
        self.output = SpeechOutputSession(capabilities.synthesis, settings.voice, input_session=self.input)
        barge_in = settings.barge_in
        self.monitor = VoiceActivityMonitor(
            capabilities.capture,
            self.scheduler,
            is_speaking=lambda: self.output.speaking,
            threshold=barge_in.threshold,
            cooldown=barge_in.cooldown,
            sample_hz=barge_in.sample_hz,
        )

        self.input.on_final_transcript = lambda text: self.dispatch(Event(EventKind.FINAL_TRANSCRIPT, text=text))
        self.input.on_permission_denied = lambda: self.dispatch(Event(EventKind.PERMISSION_DENIED))
        self.input.on_soft_error = self._handle_soft_error
        self.output.on_speech_start = lambda: self.dispatch(Event(EventKind.SPEECH_STARTED))
        self.output.on_speech_end = lambda error: self.dispatch(Event(EventKind.SPEECH_ENDED, text=error))
        self.monitor.on_barge_in = lambda level: self.dispatch(Event(EventKind.BARGE_IN))

        self.snapshot = Snapshot(speech_enabled=settings.voice.enabled)
        self._queue: deque[Event] = deque()
        self._dispatching = False
        self._request_task: asyncio.Task[None] | None = None
        self._resume_handle: TimerHandle | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def session(self) -> SessionState:
        return self.snapshot.state

    @property
    def history(self) -> ConversationHistory:
        return self.state.history

    def start(self, *, voice: bool = True) -> None:
        """Publish the initial status and optionally enter voice mode."""
        self._publish(self.snapshot.state)
        if voice:
            self.enable_voice()

    def stop(self) -> None:
        """Release every resource and return to Idle with voice mode off."""
        self.dispatch(Event(EventKind.STOP))
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    def enable_voice(self) -> None:
        self.dispatch(Event(EventKind.VOICE_ENABLED))

    def disable_voice(self) -> None:
        self.dispatch(Event(EventKind.VOICE_DISABLED))

    def submit_text(self, text: str) -> None:
        """Send typed input; dropped while a request is pending or too soon after the last."""
        self.dispatch(Event(EventKind.TEXT_SUBMITTED, text=text))

    def focus_text_input(self) -> None:
        """The user is about to type: interrupt speech like a barge-in."""
        self.dispatch(Event(EventKind.TEXT_FOCUS))

    def retry_permission(self) -> None:
        self.dispatch(Event(EventKind.RETRY_PERMISSION))

    def set_speech_output(self, enabled: bool) -> None:
        self.state.settings.voice.enabled = enabled
        self.dispatch(Event(EventKind.SET_SPEECH_OUTPUT, flag=enabled))

    async def wait_for_reply(self) -> None:
        """Wait until the in-flight request, if any, has been handled."""
        task = self._request_task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def dispatch(self, event: Event) -> None:
        """Queue an event and drain the queue unless a drain is already running."""
        self._queue.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                self._apply(self._queue.popleft())
        finally:
            self._dispatching = False

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _apply(self, event: Event) -> None:
        before = self.snapshot
        after, effects = transition(before, event, now=self.scheduler.now(), timing=self.timing)
        self.snapshot = after
        if after.state is not before.state:
            LOGGER.info("Session transition: %s -> %s", before.state.value, after.state.value)
            self._publish(after.state)
        if event.kind in (EventKind.FINAL_TRANSCRIPT, EventKind.TEXT_SUBMITTED) and not any(
            effect.kind is EffectKind.SEND_REQUEST for effect in effects
        ):
            LOGGER.info("Dropped %s while %s", event.kind.value, after.state.value)
        for effect in effects:
            self._execute(effect)

    def _execute(self, effect: Effect) -> None:
        kind = effect.kind
        if kind is EffectKind.START_INPUT:
            self.input.start()
        elif kind is EffectKind.STOP_INPUT:
            self.input.stop()
        elif kind is EffectKind.APPEND_USER:
            self._append(ConversationTurn(role="user", content=effect.text or ""))
        elif kind is EffectKind.APPEND_ASSISTANT:
            self._append(ConversationTurn(role="assistant", content=effect.text or ""))
        elif kind is EffectKind.APPEND_ERROR:
            self._append(ConversationTurn.error_turn())
        elif kind is EffectKind.SEND_REQUEST:
            history = self.state.history.turns
            self._request_task = asyncio.get_running_loop().create_task(self._request(history))
        elif kind is EffectKind.CANCEL_REQUEST:
            if self._request_task is not None:
                self._request_task.cancel()
        elif kind is EffectKind.SPEAK:
            self.output.speak(effect.text or "")
        elif kind is EffectKind.CANCEL_SPEECH:
            self.output.cancel()
        elif kind is EffectKind.ACQUIRE_CAPTURE:
            self._acquire_capture()
        elif kind is EffectKind.RELEASE_CAPTURE:
            self.monitor.close()
        elif kind is EffectKind.START_MONITOR:
            self.monitor.resume()
        elif kind is EffectKind.STOP_MONITOR:
            self.monitor.pause()
        elif kind is EffectKind.SCHEDULE_RESUME:
            self._schedule_resume(effect.delay, effect.token)
        elif kind is EffectKind.SURFACE_WARNING:
            self._warn(effect.text or "")

    def _append(self, turn: ConversationTurn) -> None:
        self.state.history.append(turn)
        if self.on_turn:
            self.on_turn(turn)

    def _publish(self, session: SessionState) -> None:
        self.state.session = session
        self.state.status = STATUS_TEXT[session]
        if self.on_status:
            self.on_status(session, self.state.status)

    def _warn(self, message: str) -> None:
        LOGGER.warning(message)
        self.state.warning = message
        if self.on_warning:
            self.on_warning(message)

    def _acquire_capture(self) -> None:
        try:
            self.monitor.open()
        except CapturePermissionError as exc:
            LOGGER.warning("Microphone unavailable: %s", exc)
            self.dispatch(Event(EventKind.PERMISSION_DENIED))
            return
        self.dispatch(Event(EventKind.INPUT_READY))

    def _schedule_resume(self, delay: float, token: int) -> None:
        # A newer resume always supersedes the previous one (its token is stale).
        if self._resume_handle is not None:
            self._resume_handle.cancel()
        self._resume_handle = self.scheduler.call_later(delay, lambda: self.dispatch(Event(EventKind.RESUME, token=token)))

    def _handle_soft_error(self, kind: str) -> None:
        if kind == RESTART_EXHAUSTED:
            self.dispatch(Event(EventKind.SOFT_WARNING, text=RECOGNITION_WARNING))

    async def _request(self, history: Sequence[ConversationTurn]) -> None:
        try:
            reply = await self.completion.send(history)
        except CompletionError as exc:
            LOGGER.warning("Completion request failed: %s", exc)
            self.dispatch(Event(EventKind.REQUEST_FAILED, text=str(exc)))
            return
        except Exception:
            LOGGER.exception("Unexpected error while waiting for the reply")
            self.dispatch(Event(EventKind.REQUEST_FAILED, text="unexpected error"))
            return
        LOGGER.info("Reply received (%s, %d attempt(s))", reply.mode, reply.attempts)
        self.dispatch(Event(EventKind.REPLY_RECEIVED, text=reply.text))
