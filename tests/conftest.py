from __future__ import annotations

import asyncio
import heapq
import itertools
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import numpy as np
import pytest

from edge_voice.audio.capabilities import (
    Capabilities,
    CapturePermissionError,
    RecognitionError,
    Utterance,
    Voice,
)
from edge_voice.config.settings import AppSettings
from edge_voice.runtime.controller import TurnController
from edge_voice.services.schemas import CompletionReply, ConversationTurn
from edge_voice.state.app_state import AppState, SessionState


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock; timers only fire from :meth:`advance`."""

    def __init__(self) -> None:
        self.time = 0.0
        self._heap: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.time + max(0.0, delay), callback)
        heapq.heappush(self._heap, (timer.when, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while self._heap and self._heap[0][0] <= target + 1e-9:
            when, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            self.time = max(self.time, when)
            timer.callback()
        self.time = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._heap if not timer.cancelled)


class FakeRecognizer:
    """Recognition capability driven by the test."""

    def __init__(self) -> None:
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None
        self.running = False
        self.starts = 0
        self.start_errors: list[str] = []

    def start(self) -> None:
        if self.start_errors:
            raise RecognitionError(self.start_errors.pop(0))
        if self.running:
            raise RecognitionError("already-started")
        self.running = True
        self.starts += 1
        if self.on_start:
            self.on_start()

    def stop(self) -> None:
        if not self.running:
            return
        self.end()

    def abort(self) -> None:
        self.stop()

    def say(self, text: str) -> None:
        self.on_result(text, "")

    def hear_partial(self, text: str) -> None:
        self.on_result("", text)

    def fail(self, kind: str) -> None:
        self.running = False
        self.on_error(kind)
        self.on_end()

    def end(self) -> None:
        self.running = False
        if self.on_end:
            self.on_end()


class FakeSynthesizer:
    """Synthesis capability; an utterance lasts until :meth:`finish`."""

    def __init__(self, voices: Iterable[Voice] | None = None) -> None:
        self.voices = list(voices) if voices is not None else [Voice("en_US-amy-medium", "en_US", default=True)]
        self.on_voices_changed = None
        self.current: Utterance | None = None
        self.spoken: list[Utterance] = []
        self.cancels = 0

    @property
    def speaking(self) -> bool:
        return self.current is not None

    def get_voices(self) -> list[Voice]:
        return list(self.voices)

    def speak(self, utterance: Utterance) -> None:
        self.current = utterance
        self.spoken.append(utterance)
        if utterance.on_start:
            utterance.on_start()

    def cancel(self) -> None:
        self.cancels += 1
        utterance, self.current = self.current, None
        if utterance is not None and utterance.on_error:
            utterance.on_error("interrupted")

    def finish(self) -> None:
        utterance, self.current = self.current, None
        if utterance is not None and utterance.on_end:
            utterance.on_end()

    def fail(self, kind: str = "synthesis-failed") -> None:
        utterance, self.current = self.current, None
        if utterance is not None and utterance.on_error:
            utterance.on_error(kind)


class FakeCapture:
    """Microphone returning a constant level (its RMS)."""

    def __init__(self, *, deny: bool = False) -> None:
        self.deny = deny
        self.level = 0.0
        self.opens = 0
        self.closes = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.deny:
            raise CapturePermissionError("microphone access denied")
        self._open = True
        self.opens += 1

    def read(self) -> np.ndarray:
        return np.full(320, self.level, dtype=np.float32)

    def close(self) -> None:
        self._open = False
        self.closes += 1


class FakeCompletion:
    """Completion backend returning queued replies (or raising queued errors)."""

    def __init__(self, replies: Iterable[Any] = ()) -> None:
        self.replies: deque[Any] = deque(replies)
        self.requests: list[list[ConversationTurn]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, history: Iterable[ConversationTurn]) -> CompletionReply:
        self.requests.append(list(history))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            item = self.replies.popleft() if self.replies else "OK"
            if isinstance(item, BaseException):
                raise item
            return CompletionReply(text=item)
        finally:
            self.in_flight -= 1


@dataclass
class Rig:
    scheduler: ManualScheduler
    recognizer: FakeRecognizer
    synth: FakeSynthesizer
    capture: FakeCapture
    completion: FakeCompletion
    state: AppState
    controller: TurnController
    statuses: list[SessionState]
    warnings: list[str]


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def synth() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def rig(scheduler, recognizer, synth, capture, completion) -> Rig:
    state = AppState(settings=AppSettings())
    statuses: list[SessionState] = []
    warnings: list[str] = []
    controller = TurnController(
        state,
        Capabilities(recognition=recognizer, synthesis=synth, capture=capture),
        completion,
        scheduler=scheduler,
        on_status=lambda session, _text: statuses.append(session),
        on_warning=warnings.append,
    )
    return Rig(scheduler, recognizer, synth, capture, completion, state, controller, statuses, warnings)
