"""Console entry point for the voice client."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .audio.capabilities import Capabilities
from .audio.capture import CaptureConfig, MicrophoneCapture
from .audio.recognizer import EndpointConfig, WhisperRecognizer
from .audio.transcriber import FasterWhisperEngine, WhisperConfig
from .audio.tts import PiperSynthesizer
from .audio.vad import VADConfig, VoiceActivityDetector
from .config.paths import models_dir
from .config.settings import AppSettings
from .config.store import load_settings, save_settings
from .runtime.controller import TurnController
from .services.api import RemoteCompletionClient
from .services.schemas import ConversationTurn
from .state.app_state import AppState, SessionState

LOGGER = logging.getLogger(__name__)

HELP_TEXT = "Commands: /voice on|off, /retry, /mute, /unmute, /quit. Empty line interrupts speech."

cli = typer.Typer(name="edge-voice", help="EDGE voice client", add_completion=False)


def build_capabilities(settings: AppSettings, models_root: Path | None = None) -> Capabilities:
    """Bind the capabilities to sounddevice, faster-whisper and piper."""
    root = models_root or models_dir()
    recognition = settings.recognition
    engine = FasterWhisperEngine(
        WhisperConfig(
            model=recognition.model,
            device=recognition.device,
            compute_type=recognition.compute_type,
            language=recognition.language,
            download_root=str(root / "whisper"),
        )
    )
    recognizer = WhisperRecognizer(
        engine,
        VoiceActivityDetector(VADConfig(aggressiveness=recognition.vad_aggressiveness)),
        EndpointConfig(device_name=recognition.input_device),
    )
    synthesizer = PiperSynthesizer(root / "piper")
    capture = MicrophoneCapture(CaptureConfig(device_name=settings.barge_in.input_device))
    return Capabilities(recognition=recognizer, synthesis=synthesizer, capture=capture)


def _print_turn(turn: ConversationTurn) -> None:
    speaker = "you" if turn.role == "user" else "edge"
    typer.echo(f"{speaker}> {turn.content}")


def _print_status(session: SessionState, status: str) -> None:
    typer.secho(f"[{status}]", dim=True)


def _print_warning(message: str) -> None:
    typer.secho(f"! {message}", fg=typer.colors.YELLOW)


def handle_command(controller: TurnController, line: str, config_path: Path | None = None) -> bool:
    """Apply a slash command. Returns False when the runner should exit."""
    command, _, argument = line[1:].strip().partition(" ")
    command = command.lower()
    argument = argument.strip().lower()
    if command in {"quit", "exit"}:
        return False
    if command == "voice" and argument in {"on", "off"}:
        if argument == "on":
            controller.enable_voice()
        else:
            controller.disable_voice()
    elif command == "retry":
        controller.retry_permission()
    elif command in {"mute", "unmute"}:
        controller.set_speech_output(command == "unmute")
        save_settings(controller.state.settings, config_path)
    else:
        typer.echo(HELP_TEXT)
    return True


async def _run_console(settings: AppSettings, *, voice: bool, config_path: Path | None) -> None:
    state = AppState(settings=settings)
    completion = RemoteCompletionClient.from_settings(settings)
    controller = TurnController(
        state,
        build_capabilities(settings),
        completion,
        on_status=_print_status,
        on_turn=_print_turn,
        on_warning=_print_warning,
    )
    typer.echo(HELP_TEXT)
    controller.start(voice=voice)
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                controller.focus_text_input()
            elif line.startswith("/"):
                if not handle_command(controller, line, config_path):
                    break
            else:
                controller.submit_text(line)
    finally:
        controller.stop()
        await controller.wait_for_reply()
        await completion.close()


@cli.command()
def run(
    voice: bool = typer.Option(True, "--voice/--no-voice", help="Start listening right away"),
    server: Optional[str] = typer.Option(None, "--server", help="Completion endpoint base URL"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Talk to the completion endpoint by voice or by typing."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings(config)
    if server:
        settings.server.base_url = server
    try:
        asyncio.run(_run_console(settings, voice=voice, config_path=config))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
