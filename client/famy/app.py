"""Terminal entrypoint for the famy voice client."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import CONFIG
from .services.logger import LogBuffer
from .services.network import ApiClient
from .services.questions import QuestionDeck
from .services.ticker import format_elapsed
from .services.uploader import RecordingUploader
from .session.conversation import ConversationObserver, ConversationSession
from .session.state_machine import SessionState
from .session.types import Message
from .store.settings_store import SettingsStore

PROMPTS = {
    SessionState.IDLE: "Start Recording",
    SessionState.LISTENING: "Pause Recording",
    SessionState.PROCESSING: "Processing...",
}

HELP = "[Enter] record/pause  [n]ext/[p]revious question  [c]ancel turn  [r]eset  [q]uit"


class ConsoleObserver(ConversationObserver):
    def __init__(self, stream=sys.stdout) -> None:
        self.stream = stream
        self._level_bar = -1

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()

    def on_state_changed(self, state: SessionState) -> None:
        self._write(f"== {PROMPTS[state]}")

    def on_transcript(self, text: str) -> None:
        if text:
            self._write(f"   ... {text}")

    def on_message(self, message: Message) -> None:
        speaker = "You" if message.type == "prompt" else "Famy"
        self._write(f"{speaker}: {message.text}")
        if message.tts_url:
            self._write(f"   (audio: {message.tts_url})")

    def on_status(self, text: str) -> None:
        self._write(f"!! {text}")

    def on_level(self, level: float) -> None:
        bar = int(level * 10)
        if bar != self._level_bar:
            self._level_bar = bar
            self.stream.write("\r" + "#" * bar + " " * (10 - bar))
            self.stream.flush()

    def on_elapsed(self, seconds: int) -> None:
        self._write(f"\nTime recorded: {format_elapsed(seconds)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to famy from the terminal.")
    parser.add_argument("--host", help=f"API host (default: settings or {CONFIG.api_host}).")
    parser.add_argument("--user-id", help="User id attached to uploaded recordings.")
    parser.add_argument("--session-id", help="Interview session id; also selects the question set.")
    parser.add_argument("--parent-message-id", help="Continue an existing conversation thread.")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path.home() / ".famy",
        help="Directory for settings and pending recordings (default: ~/.famy).",
    )
    parser.add_argument("--no-upload", action="store_true", help="Do not archive recordings to the backend.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    settings_store = SettingsStore(args.data_dir / CONFIG.settings_file)
    overrides = {
        key: value
        for key, value in (("api_host", args.host), ("user_id", args.user_id), ("session_id", args.session_id))
        if value
    }
    if args.no_upload:
        overrides["upload_recordings"] = False
    settings = settings_store.update(**overrides) if overrides else settings_store.get()

    logger = LogBuffer(CONFIG.log_history)
    client = ApiClient(settings.api_host or CONFIG.api_host)
    uploader = None
    if settings.upload_recordings:
        uploader = RecordingUploader(
            client,
            logger,
            args.data_dir / CONFIG.recordings_dir,
            user_id=settings.user_id or None,
            session_id=settings.session_id or None,
        )
        uploader.start()
    questions = QuestionDeck()
    if settings.session_id:
        questions.load(client, settings.session_id, logger)

    observer = ConsoleObserver()
    session = ConversationSession(
        client,
        logger,
        observer=observer,
        parent_message_id=args.parent_message_id,
        uploader=uploader,
    )
    session.start()
    print(questions.label())
    print(HELP)
    try:
        for line in sys.stdin:
            command = line.strip().lower()
            if command == "q":
                break
            if command == "":
                session.toggle()
            elif command == "n":
                questions.next()
                print(questions.label())
            elif command == "p":
                questions.previous()
                print(questions.label())
            elif command == "c":
                session.cancel_turn()
            elif command == "r":
                session.reset()
            else:
                print(HELP)
    except KeyboardInterrupt:
        pass
    finally:
        session.shutdown()
        if uploader is not None:
            uploader.upload_pending()
            uploader.stop()
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
