"""Console front-end for the voice agent session core.

Wires the real collaborators (aiohttp credential + moderation clients,
websocket transport, sounddevice capture and playback) around a
`SessionController` and drives it from a line-oriented prompt.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from voice_agents.agents.registry import AgentSetRegistry
from voice_agents.audio.capture import SoundDeviceMicrophone
from voice_agents.config import AppConfig
from voice_agents.credentials import HttpCredentialProvider
from voice_agents.errors import CaptureError
from voice_agents.guardrails import GuardrailVerdict, HttpModerationEvaluator
from voice_agents.preferences import PreferenceStore
from voice_agents.recorder import ItemKind, SessionRecorder, TranscriptItem
from voice_agents.session import SessionController
from voice_agents.transport.notifications import SessionStatus
from voice_agents.transport.websocket_transport import RealtimeWebSocketTransport
from voice_agents.utils.logging import setup_logging

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  /connect        - Connect (or reconnect) the session
  /disconnect     - Disconnect the session
  /ptt on|off     - Toggle push-to-talk mode
  /talk           - Start a push-to-talk turn
  /release        - End a push-to-talk turn
  /agent NAME     - Switch the active agent
  /set KEY        - Switch the agent set
  /mute           - Disable audio playback
  /unmute         - Enable audio playback
  /transcript     - Show the transcript
  /events         - Show the event log
  /logs on|off    - Show or hide event payloads in /events
  /save PATH      - Save the session recording as WAV
  /quit           - Exit
Any other line is sent to the agent as a text message.
"""


def format_item(item: TranscriptItem) -> str:
    if item.kind is ItemKind.BREADCRUMB:
        return f"[{item.timestamp}] -- {item.title}"

    line = f"[{item.timestamp}] {item.role}: {item.title}"
    if item.guardrail is not None:
        line += f"  ({item.guardrail.verdict.value}"
        if item.guardrail.category is not None and item.guardrail.verdict is GuardrailVerdict.FAIL:
            line += f": {item.guardrail.category.value}"
        line += ")"
    return line


async def handle_line(controller: SessionController, line: str) -> bool:
    """Execute one console line.

    Returns:
        False when the console should exit
    """
    text = line.strip()
    if not text:
        return True

    if not text.startswith("/"):
        await controller.send_text(text)
        return True

    command, _, arg = text[1:].partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command == "quit":
        return False
    elif command == "help":
        print(HELP_TEXT)
    elif command == "connect":
        await controller.connect()
    elif command == "disconnect":
        await controller.disconnect()
    elif command == "ptt":
        if arg not in ("on", "off"):
            print("Usage: /ptt on|off")
        else:
            await controller.set_push_to_talk(arg == "on")
    elif command == "talk":
        await controller.press_talk()
    elif command == "release":
        await controller.release_talk()
    elif command == "agent":
        await controller.select_agent(arg)
    elif command == "set":
        await controller.select_agent_set(arg)
    elif command == "mute":
        await controller.set_playback_enabled(False)
    elif command == "unmute":
        await controller.set_playback_enabled(True)
    elif command == "transcript":
        for item in controller.recorder.transcript.visible_items:
            print(format_item(item))
    elif command == "events":
        expanded = controller.preferences.current.logs_expanded
        for event in controller.recorder.events.events:
            arrow = "->" if event.direction == "client" else "<-"
            print(f"[{event.timestamp}] {arrow} {event.event_name}")
            if expanded or event.expanded:
                print(json.dumps(event.event_data, indent=2, default=str))
    elif command == "logs":
        if arg not in ("on", "off"):
            print("Usage: /logs on|off")
        else:
            controller.preferences.update(logs_expanded=arg == "on")
    elif command == "save":
        if not arg:
            print("Usage: /save PATH")
        else:
            path = controller.audio.recorder.save(Path(arg).expanduser())
            print(f"Saved recording to {path}")
    else:
        print(f"Unknown command: {command}")
        print("Type /help for available commands")

    return True


async def start_microphone(
    config: AppConfig, transport: RealtimeWebSocketTransport
) -> SoundDeviceMicrophone | None:
    """Stream the microphone into the transport; None when no input device works."""
    microphone = SoundDeviceMicrophone(
        transport.append_input_audio,
        sample_rate=config.realtime.sample_rate,
        device=config.audio.input_device,
        block_ms=config.audio.capture_block_ms,
    )
    try:
        await microphone.start()
    except CaptureError as e:
        logger.warning(f"Voice input disabled: {e}")
        print("* microphone unavailable, text input only")
        return None
    return microphone


async def run_console(
    config: AppConfig,
    agent_set_key: str | None = None,
    agent_name: str | None = None,
    use_microphone: bool = True,
) -> None:
    """Run the interactive console until /quit or EOF."""
    recorder = SessionRecorder()
    credentials = HttpCredentialProvider(config.credentials, events=recorder.events)
    evaluator = HttpModerationEvaluator(config.moderation)
    transport = RealtimeWebSocketTransport(config.realtime)
    controller = SessionController(
        config=config,
        transport=transport,
        credentials=credentials,
        evaluator=evaluator,
        registry=AgentSetRegistry(
            custom_agents_path=config.custom_agents_path,
            default_key=config.session.default_agent_set,
        ),
        preferences=PreferenceStore(config.preferences_path),
        recorder=recorder,
    )

    def on_status(status: SessionStatus) -> None:
        print(f"\n* {status.value.lower()}")
        if status is SessionStatus.DISCONNECTED and controller.last_error is not None:
            print(f"* error: {controller.last_error.message}")

    controller.add_status_listener(on_status)
    controller.load_agent_set(agent_set_key)

    runner = asyncio.create_task(controller.run())
    microphone = await start_microphone(config, transport) if use_microphone else None
    print(HELP_TEXT)

    try:
        await controller.connect(active_agent_name=agent_name)
        loop = asyncio.get_running_loop()
        while True:
            try:
                line = await loop.run_in_executor(None, input, "You: ")
            except EOFError:
                break
            try:
                if not await handle_line(controller, line):
                    break
            except Exception as e:
                logger.error(f"Command failed: {e}")
    finally:
        if microphone is not None:
            await microphone.stop()
        await controller.close()
        runner.cancel()
        await credentials.close()
        await evaluator.close()


def main() -> None:
    """Main entry point for the console."""
    parser = argparse.ArgumentParser(description="Realtime voice agent console")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/voice_agents.yaml"),
        help="Path to YAML configuration (default: configs/voice_agents.yaml)",
    )
    parser.add_argument("--agent-set", type=str, default=None, help="Agent set key")
    parser.add_argument("--agent", type=str, default=None, help="Initially active agent")
    parser.add_argument("--log-level", type=str, default=None, help="Override log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--no-mic", action="store_true", help="Text input only")

    args = parser.parse_args()

    try:
        config = AppConfig.from_yaml_with_defaults(args.config)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(args.log_level or config.log_level, json_format=args.json_logs)

    try:
        asyncio.run(run_console(config, args.agent_set, args.agent, not args.no_mic))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
