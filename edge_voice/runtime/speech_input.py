"""Continuous speech recognition with an auto-restart policy."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..audio.capabilities import PERMISSION_ERRORS, RecognitionCapability, RecognitionError
from .timers import Scheduler, TimerHandle

LOGGER = logging.getLogger(__name__)

BUSY_ERROR = "already-started"
RESTART_EXHAUSTED = "restart-exhausted"
# Expected in normal use (silence, our own abort) and never exhaust the session.
UNCOUNTED_ERRORS = frozenset({"no-speech", "aborted"})


class SpeechInputSession:
    """Wrap a recognizer so that it keeps listening while the controller wants it.

    Host recognizers stop on their own after a while. Whenever that happens and
    ``should_listen()`` still holds, the session restarts the recognizer after a
    short delay instead of immediately, since an immediate restart usually
    fails with ``already-started``.
    """

    def __init__(
        self,
        recognizer: RecognitionCapability,
        scheduler: Scheduler,
        *,
        should_listen: Callable[[], bool] = lambda: True,
        restart_delay: float = 0.25,
        busy_extra_delay: float = 0.5,
        max_backoff: float = 1.0,
        max_soft_failures: int = 5,
    ) -> None:
        self._recognizer = recognizer
        self._scheduler = scheduler
        self.should_listen = should_listen
        self.restart_delay = restart_delay
        self.busy_extra_delay = busy_extra_delay
        self.max_backoff = max_backoff
        self.max_soft_failures = max_soft_failures

        self.on_final_transcript: Optional[Callable[[str], None]] = None
        self.on_permission_denied: Optional[Callable[[], None]] = None
        self.on_soft_error: Optional[Callable[[str], None]] = None

        self.interim_text = ""
        self._wanted = False
        self._running = False
        self._fatal = False
        self._failures = 0
        self._last_error: str | None = None
        self._restart_handle: TimerHandle | None = None

        recognizer.on_start = self._handle_start
        recognizer.on_result = self._handle_result
        recognizer.on_error = self._handle_error
        recognizer.on_end = self._handle_end

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def active(self) -> bool:
        """True while the session intends to keep recognizing."""
        return self._wanted

    @property
    def running(self) -> bool:
        """True while the recognizer is started."""
        return self._running

    def start(self) -> None:
        """Start listening (also clears a previous permission failure)."""
        self._fatal = False
        self._wanted = True
        self._failures = 0
        if self._running or self._restart_handle is not None:
            return
        self._launch()

    def stop(self) -> None:
        """Stop listening and cancel any pending restart."""
        self._wanted = False
        self._cancel_restart()
        self.interim_text = ""
        if not self._running:
            return
        self._running = False
        try:
            self._recognizer.stop()
        except RecognitionError as exc:
            LOGGER.debug("Recognizer stop ignored: %s", exc.kind)

    # ------------------------------------------------------------------ #
    # Recognizer events
    # ------------------------------------------------------------------ #
    def _handle_start(self) -> None:
        self._running = True

    def _handle_result(self, final_text: str, interim_text: str) -> None:
        self.interim_text = interim_text or ""
        text = (final_text or "").strip()
        if not text or not self._wanted:
            return
        self._failures = 0
        if self.on_final_transcript:
            self.on_final_transcript(text)

    def _handle_error(self, kind: str) -> None:
        if kind in PERMISSION_ERRORS:
            self._deny()
            return
        if not self._wanted:
            return
        self._last_error = kind
        self._register_soft_failure(kind)

    def _handle_end(self) -> None:
        self._running = False
        kind, self._last_error = self._last_error, None
        if self._wanted and not self._fatal:
            self._schedule_restart(self._next_delay(kind))

    # ------------------------------------------------------------------ #
    # Restart policy
    # ------------------------------------------------------------------ #
    def _launch(self) -> None:
        try:
            self._recognizer.start()
        except RecognitionError as exc:
            if exc.kind in PERMISSION_ERRORS:
                self._deny()
                return
            if self._register_soft_failure(exc.kind):
                self._schedule_restart(self._next_delay(exc.kind))
            return
        self._running = True

    def _restart(self) -> None:
        self._restart_handle = None
        if not self._wanted or self._fatal or self._running:
            return
        if not self.should_listen():
            LOGGER.debug("Skipping recognizer restart: controller no longer listening")
            return
        LOGGER.debug("Restarting recognizer")
        self._launch()

    def _next_delay(self, kind: str | None) -> float:
        if kind == BUSY_ERROR:
            return self.restart_delay + self.busy_extra_delay
        if kind is None or kind in UNCOUNTED_ERRORS:
            return self.restart_delay
        return min(self.restart_delay * (2 ** self._failures), self.max_backoff)

    def _schedule_restart(self, delay: float) -> None:
        if self._restart_handle is not None:
            return
        self._restart_handle = self._scheduler.call_later(delay, self._restart)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _register_soft_failure(self, kind: str) -> bool:
        """Count a soft error; return False once the session gave up."""
        if kind not in UNCOUNTED_ERRORS:
            self._failures += 1
        LOGGER.debug("Recognition soft error %s (%d consecutive)", kind, self._failures)
        if self.on_soft_error:
            self.on_soft_error(kind)
        if self._failures < self.max_soft_failures:
            return True
        LOGGER.warning("Recognizer failed %d times in a row; giving up", self._failures)
        self._wanted = False
        self._cancel_restart()
        if self.on_soft_error:
            self.on_soft_error(RESTART_EXHAUSTED)
        return False

    def _deny(self) -> None:
        LOGGER.warning("Speech recognition permission denied")
        self._fatal = True
        self._wanted = False
        self._cancel_restart()
        if self.on_permission_denied:
            self.on_permission_denied()
