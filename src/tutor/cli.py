"""
Terminal front end for a voice practice session.

Usage:
    voice-tutor --lesson-id 1 --lessons-file lessons.json
    voice-tutor --title "Ordering at a cafe"

Press Enter to start speaking, Enter again to stop. Type q to quit.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence, Tuple

import structlog

from src.tutor.config import ConfigError, init_config
from src.tutor.devices import SoundDeviceInput, SoundDevicePlayer, TerminalSurface
from src.tutor.errors import LessonNotFound, Notice
from src.tutor.lessons import Lesson, create_lesson_provider
from src.tutor.llm import OpenAIChat
from src.tutor.session import VoiceChatSession
from src.tutor.stt import ElevenLabsSTT
from src.tutor.transcript import Message
from src.tutor.tts import ElevenLabsTTS, VoiceConfig

logger = structlog.get_logger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def format_message(message: Message) -> str:
    speaker = "You" if message.is_user else "Tutor"
    suffix = " ..." if message.is_pending else ""
    return f"[{message.display_time}] {speaker}: {message.text}{suffix}"


def print_transcript(messages: Tuple[Message, ...]) -> None:
    if messages:
        print(format_message(messages[-1]), flush=True)


def print_notice(notice: Notice) -> None:
    print(f"! {notice.message}", file=sys.stderr, flush=True)


def _device_arg(value: str):
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Speak with an AI tutor about a lesson.")
    parser.add_argument("--lesson-id", default="1", help="Lesson id to practise")
    parser.add_argument("--lessons-file", default=None, help="JSON file with lessons (overrides LESSONS_FILE)")
    parser.add_argument("--title", default=None, help="Title for --lesson-id (added to any lessons file)")
    parser.add_argument("--no-waveform", action="store_true", help="Do not draw the live waveform")
    parser.add_argument("--input-device", type=_device_arg, default=None, help="sounddevice input device name or index")
    parser.add_argument("--output-device", type=_device_arg, default=None, help="sounddevice output device name or index")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = init_config()
    configure_logging(config.log_level)

    lessons = create_lesson_provider(
        config,
        lessons_file=args.lessons_file,
        extra=[Lesson(id=args.lesson_id, title=args.title)] if args.title else (),
    )
    try:
        lesson = await lessons.resolve(args.lesson_id)
    except LessonNotFound as e:
        logger.error("Lesson not found", lesson_id=args.lesson_id)
        print(str(e), file=sys.stderr)
        return 2

    stt = ElevenLabsSTT(config)
    tts = ElevenLabsTTS(config)
    llm = OpenAIChat(config)
    surface = None if args.no_waveform else TerminalSurface(config.waveform_width, config.waveform_height)

    session = VoiceChatSession(
        lesson,
        input_device=SoundDeviceInput(
            sample_rate=config.sample_rate,
            blocksize=config.capture_blocksize,
            device=args.input_device,
        ),
        player=SoundDevicePlayer(device=args.output_device),
        lessons=lessons,
        stt=stt,
        llm=llm,
        tts=tts,
        surface=surface,
        voice=VoiceConfig.from_config(config),
        on_notice=print_notice,
        config=config,
    )
    session.transcript.subscribe(print_transcript)

    print(f"{lesson.title} - Speaking Practice", flush=True)
    try:
        while True:
            command = await asyncio.to_thread(input, "Press Enter to start speaking (q to quit): ")
            if command.strip().lower() == "q":
                break
            if not await session.start_recording():
                continue

            await asyncio.to_thread(input, "Listening... press Enter to stop.\n")
            print("Processing your speech...", flush=True)
            await session.stop_recording()
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await session.close()
        await stt.close()
        await tts.close()
        await llm.close()

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
