"""CLI entry point for the voice assistant."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
import structlog

from ..config.settings import settings
from ..core.conversation_session import ConversationSession, SessionConfig, create_session
from ..errors import ValidationError, VoiceAssistantError
from ..providers import registry
from ..state.attachments import Attachment, load_attachment_file
from ..state.conversation import Message, MessageStatus, Role
from ..utils.logging import setup_logging_from_settings


logger = structlog.get_logger()


HELP_TEXT = """Commands:
  /listen   start or stop speech input
  /tab      start or stop tab audio capture
  /device   select the speech input device (e.g. /device 3)
  /new      start a new session
  /metrics  show session metrics
  /status   show session status
  /quit     exit
Anything else is sent as a message."""


def load_attachments(paths: Tuple[str, ...]) -> List[Attachment]:
    """Load --attach files, reporting and skipping the ones that fail."""
    attachments = []
    for path in paths:
        try:
            attachments.append(
                load_attachment_file(path, max_size_mb=settings.attachments.max_file_size_mb)
            )
        except ValidationError as e:
            click.echo(click.style(f"❌ {e.message}", fg="red"), err=True)
    return attachments


def format_metrics(session: ConversationSession) -> str:
    m = session.metrics

    def ms(value: Optional[float]) -> str:
        return f"{value:.0f}ms" if value is not None else "-"

    return (
        f"First chunk: {ms(m.time_to_first_chunk)} | Total: {ms(m.total_response_time)} | "
        f"Last turn: {m.last_prompt_tokens} in / {m.last_response_tokens} out | "
        f"Session: {m.session_prompt_tokens} in / {m.session_response_tokens} out | "
        f"Cost: ${m.estimated_cost:.6f}"
    )


class ConsoleRenderer:
    """Prints session events to the terminal as they arrive."""

    def __init__(self, session: ConversationSession):
        self.session = session
        self.printed = {}
        self.typed: List[str] = []

        session.on_message.subscribe(self.on_message)
        session.on_error.subscribe(self.on_error)
        session.on_status.subscribe(self.on_status)
        if session.speech is not None:
            session.speech.on_interim.subscribe(self.on_interim)

    def on_message(self, message: Message) -> None:
        if message.role == Role.USER:
            if self.typed and self.typed[0] == message.text:
                self.typed.pop(0)
            else:
                click.echo(click.style(f"🎙️  You: {message.text}", fg="cyan"))
            return

        shown = self.printed.get(message.id, 0)
        if shown == 0 and message.status != MessageStatus.PENDING:
            click.echo(click.style("🤖 ", fg="green"), nl=False)
        if len(message.text) > shown:
            click.echo(message.text[shown:], nl=False)
            self.printed[message.id] = len(message.text)
        if message.status == MessageStatus.COMPLETE:
            click.echo()

    def on_error(self, error: Optional[VoiceAssistantError]) -> None:
        if error is not None:
            click.echo(click.style(f"\n❌ {error.message}", fg="red"), err=True)

    def on_status(self, status: str) -> None:
        if status:
            click.echo(click.style(f"[{status}]", dim=True), err=True)

    def on_interim(self, text: str) -> None:
        if text:
            click.echo(click.style(f"… {text}", dim=True), err=True)


def _read_line() -> Optional[str]:
    try:
        return click.prompt("", prompt_suffix="> ", default="", show_default=False)
    except (click.exceptions.Abort, EOFError):
        return None


async def run_chat(session: ConversationSession) -> None:
    renderer = ConsoleRenderer(session)
    loop = asyncio.get_running_loop()

    if not session.initialize():
        click.echo("Chat is not available until the configuration is fixed.", err=True)

    while True:
        line = await loop.run_in_executor(None, _read_line)
        if line is None:
            break
        line = line.strip()
        if not line:
            continue

        if line in ("/quit", "/exit"):
            break
        elif line == "/help":
            click.echo(HELP_TEXT)
        elif line == "/new":
            session.new_session()
            renderer.printed.clear()
            click.echo(click.style("✨ New session started", fg="green"))
        elif line == "/listen":
            session.toggle_listening()
        elif line == "/tab":
            await session.toggle_tab_capture()
        elif line.startswith("/device"):
            device = line[len("/device"):].strip() or "default"
            session.select_input_device(device)
            click.echo(f"Speech input device: {device}")
        elif line == "/metrics":
            click.echo(format_metrics(session))
        elif line == "/status":
            click.echo(json.dumps(session.get_status(), indent=2, default=str))
        elif line.startswith("/"):
            click.echo(f"Unknown command: {line}. Type /help for commands.")
        else:
            renderer.typed.append(line)
            await session.submit_text(line)

    await session.wait_for_pending_turns()
    await session.close()


@click.command()
@click.option("--system", "-s", help="System instruction for the assistant")
@click.option("--personalization", "-p", help="Personal context to prime the session with")
@click.option(
    "--attach", "-a", multiple=True, type=click.Path(exists=True, dir_okay=False),
    help="File to add to the session context (repeatable)",
)
@click.option("--device", "-d", help="Speech input device id (see 'devices')")
@click.option("--ai-gateway", default=None, help="AI gateway to use")
@click.option("--no-tab-transcription", is_flag=True, help="Capture tab audio without transcribing it")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--mock", is_flag=True, help="Run in mock mode (no API calls, no audio devices)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def chat(
    system: Optional[str],
    personalization: Optional[str],
    attach: Tuple[str, ...],
    device: Optional[str],
    ai_gateway: Optional[str],
    no_tab_transcription: bool,
    config: Optional[str],
    mock: bool,
    debug: bool,
):
    """
    Start an interactive voice/text conversation.

    Type messages, or use /listen to talk and /tab to transcribe tab audio.
    """
    if config:
        settings.config_file = Path(config)
        settings.load_from_file()
    setup_logging_from_settings(settings, debug=debug, quiet=not debug)

    session_config = SessionConfig(
        ai_gateway=ai_gateway or settings.providers.ai_gateway,
        speech_service=settings.providers.speech_service,
        capture_service=settings.providers.capture_service,
        transcriber=settings.providers.transcriber,
        input_device=device or settings.audio.input_device,
        system_instruction=system,
        personalization=personalization or "",
        attachments=load_attachments(attach),
        transcribe_tab_audio=not no_tab_transcription,
        mock_mode=mock,
    )

    click.echo(click.style("🎙️  Voice Assistant", fg="green", bold=True))
    if mock:
        click.echo(click.style("⚠️  Running in MOCK mode - no API calls will be made", fg="yellow"))
    click.echo("Type /help for commands.\n")

    try:
        session = create_session(session_config)
        asyncio.run(run_chat(session))
    except KeyboardInterrupt:
        click.echo("\n\nShutting down...")
    except ValueError as e:
        click.echo(click.style(f"❌ {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\n👋 Goodbye!")


async def run_ask(session: ConversationSession, text: str, stream_output: bool) -> Optional[Message]:
    if stream_output:
        printed = {}

        def echo_delta(message: Message) -> None:
            if message.role != Role.ASSISTANT:
                return
            shown = printed.get(message.id, 0)
            if len(message.text) > shown:
                click.echo(message.text[shown:], nl=False)
                printed[message.id] = len(message.text)

        session.on_message.subscribe(echo_delta)

    reply = await session.send_turn(text) if session.initialize() else None
    await session.close()
    return reply


@click.command()
@click.option("--input", "-i", "input_text", help="Message to send (reads stdin if omitted)")
@click.option("--system", "-s", help="System instruction for the assistant")
@click.option("--personalization", "-p", help="Personal context to prime the session with")
@click.option(
    "--attach", "-a", multiple=True, type=click.Path(exists=True, dir_okay=False),
    help="File to add to the session context (repeatable)",
)
@click.option("--json", "json_output", is_flag=True, help="Output response as JSON with metrics")
@click.option("--metrics", is_flag=True, help="Print session metrics after the response")
@click.option("--mock", is_flag=True, help="Use the mock gateway")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def ask(
    input_text: Optional[str],
    system: Optional[str],
    personalization: Optional[str],
    attach: Tuple[str, ...],
    json_output: bool,
    metrics: bool,
    mock: bool,
    debug: bool,
):
    """
    Send a single message and stream the reply.

    Examples:
    \b
        voice-assistant ask --input "Hello, how are you?"
        echo "Tell me a joke" | voice-assistant ask --metrics
    """
    setup_logging_from_settings(settings, debug=debug, quiet=not debug)

    if input_text is None:
        input_text = sys.stdin.read()
    if not input_text or not input_text.strip():
        click.echo("Error: No input provided", err=True)
        sys.exit(1)

    session_config = SessionConfig(
        ai_gateway=settings.providers.ai_gateway,
        system_instruction=system,
        personalization=personalization or "",
        attachments=load_attachments(attach),
        transcribe_tab_audio=False,
        mock_mode=mock,
    )
    session = create_session(session_config)
    reply = asyncio.run(run_ask(session, input_text, stream_output=not json_output))

    if reply is None:
        error = session.current_error
        if json_output:
            click.echo(json.dumps({"input": input_text.strip(), "error": error.to_dict() if error else None}, indent=2))
        else:
            click.echo(f"\nError: {error.message if error else 'no response'}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(
            json.dumps(
                {
                    "input": input_text.strip(),
                    "response": reply.text,
                    "metrics": session.metrics.to_dict(),
                    "messages": session.conversation.to_list(),
                },
                indent=2,
            )
        )
    else:
        click.echo()
        if metrics:
            click.echo("\n--- Metrics ---", err=True)
            click.echo(format_metrics(session), err=True)


@click.command()
def devices():
    """List audio input devices usable for speech input or tab capture."""
    try:
        import sounddevice as sd
        device_list = sd.query_devices()
        default_input = sd.default.device[0]
    except (ImportError, OSError) as e:
        click.echo(click.style(f"❌ Audio devices unavailable: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("🎧 Audio Input Devices")
    click.echo("-" * 50)
    for index, device in enumerate(device_list):
        if device["max_input_channels"] <= 0:
            continue
        marker = "*" if index == default_input else " "
        click.echo(f"{marker} {index:>3}  {device['name']} ({device['max_input_channels']} ch)")

    click.echo("\nUse --device <id> for speech input, LOOPBACK_DEVICE=<id> for tab audio.")


@click.command()
def providers():
    """List available providers."""
    click.echo("🔌 Available Providers")
    click.echo("-" * 50)

    sections = [
        ("🤖 AI Gateways", registry.list_ai_gateways(), settings.providers.ai_gateway),
        ("🎙️  Speech Services", registry.list_speech_services(), settings.providers.speech_service),
        ("🖥️  Capture Services", registry.list_capture_services(), settings.providers.capture_service),
        ("📝 Transcribers", registry.list_transcribers(), settings.providers.transcriber),
    ]
    for title, names, selected in sections:
        click.echo(f"\n{title} ({len(names)})")
        for name in names:
            suffix = " (selected)" if name == selected else ""
            click.echo(f"  - {name}{suffix}")


@click.group()
def cli():
    """Voice assistant: talk to Gemini with live speech and tab audio transcription."""


cli.add_command(chat)
cli.add_command(ask)
cli.add_command(devices)
cli.add_command(providers)


if __name__ == "__main__":
    cli()
