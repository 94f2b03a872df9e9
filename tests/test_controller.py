from __future__ import annotations

import asyncio
import random

import pytest

from edge_voice.services.errors import RateLimited, ServiceError
from edge_voice.services.schemas import ERROR_MARKER, clamp_window
from edge_voice.state.app_state import SessionState


def _contents(controller) -> list[str]:
    return [turn.content for turn in controller.history]


@pytest.mark.asyncio
async def test_hello_round_trip(rig) -> None:
    rig.completion.replies.append("Hi there")
    controller = rig.controller

    controller.start()
    assert controller.session is SessionState.LISTENING
    assert rig.recognizer.running

    rig.recognizer.say("Hello")
    assert controller.session is SessionState.THINKING
    assert not rig.recognizer.running
    assert _contents(controller) == ["Hello"]

    await controller.wait_for_reply()
    assert controller.session is SessionState.SPEAKING
    assert rig.synth.current is not None and rig.synth.current.text == "Hi there"
    assert _contents(controller) == ["Hello", "Hi there"]
    assert rig.state.status == "Speaking…"

    rig.synth.finish()
    assert controller.session is SessionState.WAITING
    rig.scheduler.advance(0.35)
    assert controller.session is SessionState.LISTENING
    assert rig.recognizer.running
    assert rig.statuses == [
        SessionState.IDLE,
        SessionState.LISTENING,
        SessionState.THINKING,
        SessionState.SPEAKING,
        SessionState.WAITING,
        SessionState.LISTENING,
    ]


@pytest.mark.asyncio
async def test_request_carries_user_turn(rig) -> None:
    rig.controller.start()
    rig.recognizer.say("  what time is it  ")
    await rig.controller.wait_for_reply()
    assert [turn.content for turn in rig.completion.requests[0]] == ["what time is it"]


@pytest.mark.asyncio
async def test_repeated_transcript_starts_one_turn(rig) -> None:
    rig.controller.start()
    rig.recognizer.say("Hello")
    rig.recognizer.say("Hello")
    await rig.controller.wait_for_reply()
    assert rig.statuses.count(SessionState.THINKING) == 1
    assert len(rig.completion.requests) == 1


@pytest.mark.asyncio
async def test_two_quick_submissions_send_one_request(rig) -> None:
    controller = rig.controller
    controller.start(voice=False)
    controller.submit_text("first")
    controller.submit_text("second")
    await controller.wait_for_reply()
    assert len(rig.completion.requests) == 1
    assert _contents(controller) == ["first", "OK"]


@pytest.mark.asyncio
async def test_minimum_spacing_between_sends(rig) -> None:
    controller = rig.controller
    controller.start(voice=False)
    controller.set_speech_output(False)

    controller.submit_text("one")
    await controller.wait_for_reply()
    assert controller.session is SessionState.WAITING
    rig.scheduler.advance(0.5)
    assert controller.session is SessionState.IDLE

    controller.submit_text("two")
    assert len(rig.completion.requests) == 1
    assert controller.session is SessionState.IDLE

    rig.scheduler.advance(0.7)
    controller.submit_text("three")
    await controller.wait_for_reply()
    assert len(rig.completion.requests) == 2
    assert _contents(controller) == ["one", "OK", "three", "OK"]


@pytest.mark.asyncio
async def test_muted_reply_returns_to_listening(rig) -> None:
    controller = rig.controller
    controller.start()
    controller.set_speech_output(False)
    rig.recognizer.say("hi")
    await controller.wait_for_reply()
    assert rig.synth.spoken == []
    assert controller.session is SessionState.WAITING
    assert not rig.recognizer.running
    rig.scheduler.advance(0.5)
    assert controller.session is SessionState.LISTENING
    assert rig.recognizer.running


@pytest.mark.asyncio
async def test_barge_in_interrupts_and_resumes(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("tell me a story")
    await controller.wait_for_reply()
    assert controller.session is SessionState.SPEAKING

    rig.capture.level = 0.3
    rig.scheduler.advance(0.02)
    assert controller.session is SessionState.INTERRUPTED
    assert rig.synth.current is None
    assert not rig.recognizer.running

    rig.capture.level = 0.0
    rig.scheduler.advance(0.3)
    assert controller.session is SessionState.INTERRUPTED
    rig.scheduler.advance(0.3)
    assert controller.session is SessionState.LISTENING
    assert rig.recognizer.running
    # The cancelled utterance never produced a natural end.
    assert SessionState.WAITING not in rig.statuses


@pytest.mark.asyncio
async def test_quiet_microphone_does_not_interrupt(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    await controller.wait_for_reply()
    rig.capture.level = 0.01
    rig.scheduler.advance(1.0)
    assert controller.session is SessionState.SPEAKING


@pytest.mark.asyncio
async def test_text_focus_interrupts_speech(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    await controller.wait_for_reply()
    controller.focus_text_input()
    assert controller.session is SessionState.INTERRUPTED
    assert rig.synth.current is None


@pytest.mark.asyncio
async def test_typing_while_speaking_cancels_speech(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    await controller.wait_for_reply()
    rig.scheduler.advance(2.0)
    controller.submit_text("stop, another question")
    assert controller.session is SessionState.THINKING
    assert rig.synth.current is None
    await controller.wait_for_reply()
    assert controller.session is SessionState.SPEAKING


@pytest.mark.asyncio
async def test_capture_denied_blocks_until_retry(rig) -> None:
    rig.capture.deny = True
    controller = rig.controller
    controller.start()
    assert controller.session is SessionState.PERMISSION_BLOCKED
    assert rig.recognizer.starts == 0
    assert rig.warnings and "denied" in rig.warnings[0]

    rig.scheduler.advance(10.0)
    assert controller.session is SessionState.PERMISSION_BLOCKED
    assert rig.recognizer.starts == 0

    rig.capture.deny = False
    controller.retry_permission()
    assert controller.session is SessionState.LISTENING
    assert rig.capture.opens == 1
    assert rig.recognizer.running


@pytest.mark.asyncio
async def test_recognition_denied_blocks(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.fail("not-allowed")
    assert controller.session is SessionState.PERMISSION_BLOCKED
    rig.scheduler.advance(5.0)
    assert not rig.recognizer.running
    assert rig.recognizer.starts == 1
    assert not rig.capture.is_open


@pytest.mark.asyncio
async def test_typed_input_works_while_blocked(rig) -> None:
    rig.capture.deny = True
    rig.completion.replies.append("Sure")
    controller = rig.controller
    controller.start()
    controller.submit_text("can you hear me?")
    assert controller.session is SessionState.THINKING
    await controller.wait_for_reply()
    assert controller.session is SessionState.SPEAKING
    rig.synth.finish()
    assert controller.session is SessionState.PERMISSION_BLOCKED
    assert rig.recognizer.starts == 0


@pytest.mark.asyncio
async def test_failed_request_appends_error_turn(rig) -> None:
    rig.completion.replies.append(ServiceError("service error 503", status=503, detail="busy"))
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    await controller.wait_for_reply()

    assert controller.session is SessionState.IDLE
    last = controller.history.turns[-1]
    assert last.error and last.content == ERROR_MARKER
    assert rig.synth.spoken == []

    rig.scheduler.advance(0.5)
    assert controller.session is SessionState.LISTENING
    rig.scheduler.advance(2.0)
    rig.recognizer.say("hello again")
    await controller.wait_for_reply()
    assert len(rig.completion.requests) == 2
    assert [turn.content for turn in clamp_window(controller.history.turns, 12)] == ["hello", "hello again"]


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained(rig) -> None:
    rig.completion.replies.append(ValueError("boom"))
    controller = rig.controller
    controller.start(voice=False)
    controller.submit_text("hi")
    await controller.wait_for_reply()
    assert controller.session is SessionState.IDLE
    assert controller.history.turns[-1].error


@pytest.mark.asyncio
async def test_synthesis_error_resumes_listening(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    await controller.wait_for_reply()
    rig.synth.fail()
    assert controller.session is SessionState.WAITING
    rig.scheduler.advance(0.35)
    assert controller.session is SessionState.LISTENING


@pytest.mark.asyncio
async def test_speech_end_without_voice_mode_goes_idle(rig) -> None:
    controller = rig.controller
    controller.start(voice=False)
    controller.submit_text("hello")
    await controller.wait_for_reply()
    rig.synth.finish()
    assert controller.session is SessionState.IDLE
    assert rig.recognizer.starts == 0


@pytest.mark.asyncio
async def test_disable_voice_releases_capture(rig) -> None:
    controller = rig.controller
    controller.start()
    assert rig.capture.is_open
    controller.disable_voice()
    assert controller.session is SessionState.IDLE
    assert not rig.recognizer.running
    assert not rig.capture.is_open


@pytest.mark.asyncio
async def test_stop_cancels_pending_request(rig) -> None:
    controller = rig.controller
    controller.start()
    rig.recognizer.say("hello")
    controller.stop()
    await controller.wait_for_reply()
    assert controller.session is SessionState.IDLE
    assert _contents(controller) == ["hello"]
    assert not rig.capture.is_open
    assert not rig.recognizer.running


@pytest.mark.asyncio
async def test_restart_exhaustion_surfaces_warning(rig) -> None:
    controller = rig.controller
    controller.start()
    for _ in range(5):
        rig.recognizer.fail("network")
        rig.scheduler.advance(1.0)
    assert rig.warnings
    assert "type" in rig.warnings[-1]
    assert controller.session is SessionState.IDLE
    assert rig.state.status == "Idle"
    assert not rig.recognizer.running

    controller.submit_text("typed instead")
    assert controller.session is SessionState.THINKING
    await controller.wait_for_reply()
    rig.synth.finish()
    rig.scheduler.advance(0.35)
    assert controller.session is SessionState.LISTENING
    assert rig.recognizer.running


@pytest.mark.asyncio
async def test_same_answer_in_a_later_turn_is_sent(rig) -> None:
    rig.completion.replies.extend(["Are you sure?", "Done."])
    controller = rig.controller
    controller.start()
    rig.recognizer.say("yes")
    await controller.wait_for_reply()
    rig.synth.finish()
    rig.scheduler.advance(2.0)
    assert controller.session is SessionState.LISTENING

    rig.recognizer.say("yes")
    assert controller.session is SessionState.THINKING
    await controller.wait_for_reply()
    assert len(rig.completion.requests) == 2
    assert _contents(controller) == ["yes", "Are you sure?", "yes", "Done."]


@pytest.mark.asyncio
async def test_retries_exhausted_error_is_contained(rig) -> None:
    rig.completion.replies.append(RateLimited("rate limited (429)", status=429))
    controller = rig.controller
    controller.start(voice=False)
    controller.submit_text("hi")
    await controller.wait_for_reply()
    assert controller.session is SessionState.IDLE


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(12))
async def test_never_listens_while_speaking(rig, seed: int) -> None:
    rng = random.Random(seed)
    controller = rig.controller
    controller.start()
    actions = ["say", "type", "finish", "loud", "quiet", "tick", "reply", "focus", "toggle", "end", "mute"]
    voice_on = True
    for step in range(250):
        action = rng.choice(actions)
        if action == "say" and rig.recognizer.running:
            rig.recognizer.say(f"utterance {step}")
        elif action == "type":
            controller.submit_text(f"typed {step}")
        elif action == "finish":
            rig.synth.finish()
        elif action == "loud":
            rig.capture.level = 0.3
        elif action == "quiet":
            rig.capture.level = 0.0
        elif action == "tick":
            rig.scheduler.advance(rng.choice([0.02, 0.2, 0.4, 0.7, 1.5]))
        elif action == "reply":
            await asyncio.sleep(0)
            await asyncio.sleep(0)
        elif action == "focus":
            controller.focus_text_input()
        elif action == "toggle":
            voice_on = not voice_on
            if voice_on:
                controller.enable_voice()
            else:
                controller.disable_voice()
        elif action == "end" and rig.recognizer.running:
            rig.recognizer.end()
        elif action == "mute":
            controller.set_speech_output(rng.random() < 0.7)

        assert not (rig.recognizer.running and rig.synth.speaking)
        assert rig.completion.max_in_flight <= 1
        if controller.session is SessionState.SPEAKING:
            assert not rig.recognizer.running

    controller.stop()
    await controller.wait_for_reply()
