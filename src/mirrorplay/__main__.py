#!/usr/bin/env python3
"""
Mirror Play command-line client.

Usage:
    mirrorplay [options] COMMAND [args]

Commands:
    transcribe              Record an answer and print the transcript
    rehearse SCENARIO_ID    Rehearse a scenario by voice or text
    analyze                 Record an answer to a practice prompt and score it
    duo SESSION_ID          Take part in a duo practice session
    usage                   Show daily usage for your plan

Options:
    --config PATH        Path to configuration file
    --base-url URL       Server base URL
    --token TOKEN        Bearer token
    --device INDEX       Input device index
    --list-devices       List available audio devices and exit
    --verbose, -v        Enable verbose debug logging
"""

import argparse
import functools
import logging
import sys
import threading
from pathlib import Path

from mirrorplay import __version__
from mirrorplay.common.api_client import APIError
from mirrorplay.common.config import ClientConfig
from mirrorplay.common.context import AppContext
from mirrorplay.common.logging_config import setup_logging
from mirrorplay.common.models import CaptureState, DuoStatus, UsageInfo
from mirrorplay.common.notifier_base import format_user_error
from mirrorplay.console import ConsoleNotifier
from mirrorplay.practice.duo import DuoError, DuoSession
from mirrorplay.practice.rehearsal import RehearsalSession
from mirrorplay.voice.audio_recorder import AudioRecorder
from mirrorplay.voice.capture_session import CaptureSession
from mirrorplay.voice.transcription import TranscriptionPipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="mirrorplay",
        description="Mirror Play voice practice client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        help="Server base URL",
    )
    parser.add_argument(
        "--token",
        type=str,
        help="Bearer token (saved to the config file)",
    )
    parser.add_argument(
        "--device",
        type=int,
        help="Input device index (see --list-devices)",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio devices and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("transcribe", help="Record an answer and print the transcript")

    rehearse = subparsers.add_parser("rehearse", help="Rehearse a scenario")
    rehearse.add_argument("scenario_id", help="Scenario to rehearse")

    analyze = subparsers.add_parser("analyze", help="Score a spoken answer")
    analyze.add_argument("--prompt", required=True, help="Practice prompt being answered")
    analyze.add_argument("--category", default="general", help="Practice category")

    duo = subparsers.add_parser("duo", help="Take part in a duo practice session")
    duo.add_argument("session_id", help="Duo session id")

    subparsers.add_parser("usage", help="Show daily usage for your plan")

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def list_audio_devices() -> None:
    """List available audio input devices."""
    print("\nAvailable Audio Input Devices:")
    print("-" * 50)

    devices = AudioRecorder.list_input_devices()
    if not devices:
        print("No audio input devices found.")
        print("Install PyAudio:")
        print("  pip install 'mirrorplay-client[audio]'")
        print("  Ubuntu/Debian: sudo apt install portaudio19-dev")
        return

    for device in devices:
        print(f"  [{device['index']}] {device['name']}")
        print(f"      Channels: {device['channels']}, Sample Rate: {device['sample_rate']}")

    print()


def record_answer(session: CaptureSession) -> bool:
    """
    Record one answer and wait until its submission has finished.

    Ctrl+C stops the recording early; otherwise it stops after a pause.
    """
    finished = threading.Event()

    def on_state(state: CaptureState) -> None:
        if state is CaptureState.IDLE:
            finished.set()

    session.on_state = on_state
    if not session.start():
        return False

    print("Speak now. Recording stops after a pause, or press Ctrl+C to stop.")
    try:
        while not finished.wait(0.1):
            pass
    except KeyboardInterrupt:
        session.stop()
        finished.wait()
    return True


def run_transcribe(context: AppContext) -> int:
    pipeline = TranscriptionPipeline(context.api_client, context.notifier)
    with CaptureSession(context, pipeline.submit) as session:
        record_answer(session)
    if not pipeline.last_transcription:
        return 1
    print(pipeline.last_transcription)
    return 0


def run_rehearse(context: AppContext, scenario_id: str) -> int:
    rehearsal = RehearsalSession(context.api_client, context.notifier, scenario_id=scenario_id)
    pipeline = TranscriptionPipeline(
        context.api_client, context.notifier, send_message=rehearsal.send_message
    )

    print(f"Rehearsing '{scenario_id}'. Type a reply, press Enter to speak, or q to quit.")
    with CaptureSession(context, pipeline.submit) as session:
        while not rehearsal.state.completed:
            try:
                line = input("\nYou: ").strip()
            except EOFError:
                break
            if line.lower() == "q":
                break

            seen = len(rehearsal.state.messages)
            if line:
                context.run(rehearsal.send_message(line))
            else:
                record_answer(session)

            for message in rehearsal.state.messages[seen:]:
                speaker = "Them" if message.role == "assistant" else "You said"
                print(f"{speaker}: {message.content}")

    state = rehearsal.state
    if state.completed:
        print(f"\nScore: {state.score if state.score is not None else '-'}")
        if state.feedback:
            for strength in state.feedback.strengths:
                print(f"  + {strength}")
            for improvement in state.feedback.improvements:
                print(f"  - {improvement}")
            if state.feedback.overall_tip:
                print(f"Tip: {state.feedback.overall_tip}")
    return 0


def run_analyze(context: AppContext, prompt: str, category: str) -> int:
    pipeline = TranscriptionPipeline(context.api_client, context.notifier)
    submit = functools.partial(pipeline.analyze, prompt=prompt, category=category)

    print(f"Prompt: {prompt}")
    with CaptureSession(context, submit) as session:
        record_answer(session)

    analysis = pipeline.last_analysis
    if analysis is None:
        return 1
    print(f"\nScore: {analysis.score}")
    if analysis.tone:
        print(f"Tone: {analysis.tone}")
    if analysis.transcription:
        print(f"You said: {analysis.transcription}")
    if analysis.feedback:
        print(f"Feedback: {analysis.feedback}")
    return 0


def _print_duo(duo: DuoSession) -> None:
    print(f"\nSession {duo.record.id} ({duo.status.value})")
    print(f"You are {duo.my_role}; your partner is {duo.partner_role}.")
    for message in duo.messages:
        score = f" [{message.score}]" if message.score is not None else ""
        print(f"  {message.role}: {message.message}{score}")


def run_duo(context: AppContext, session_id: str) -> int:
    duo = context.run(
        DuoSession.load(
            context.api_client,
            context.notifier,
            session_id,
            min_messages_to_complete=context.config.min_duo_messages,
        )
    )

    if duo.status is DuoStatus.PENDING and not duo.is_host:
        answer = input("Accept this invitation? [y/N] ").strip().lower()
        if answer != "y" or not context.run(duo.accept()):
            return 0
        context.run(duo.refresh())

    while duo.status is not DuoStatus.COMPLETED:
        _print_duo(duo)
        hints = ["Enter to refresh", "q to quit"]
        if duo.can_complete:
            hints.insert(0, "'complete' to finish")
        prompt = "Your response" if duo.is_my_turn else "Waiting for your partner"
        try:
            line = input(f"{prompt} ({', '.join(hints)}): ").strip()
        except EOFError:
            break

        if line.lower() == "q":
            break
        try:
            if line.lower() == "complete" and duo.can_complete:
                completion = context.run(duo.complete())
                if completion is not None:
                    print(
                        f"Final scores - host: {completion.host_score}, "
                        f"partner: {completion.partner_score}"
                    )
            elif line:
                context.run(duo.submit_response(line))
            else:
                context.run(duo.refresh())
        except DuoError as e:
            context.notifier.show_notification("Not now", str(e))
    return 0


def run_usage(context: AppContext) -> int:
    usage = UsageInfo.from_dict(context.run(context.api_client.get_usage()))
    limit = "unlimited" if usage.daily_limit is None else str(usage.daily_limit)
    print(f"Plan: {usage.tier.value}")
    print(f"Used today: {usage.used_today} / {limit}")
    if usage.remaining is not None:
        print(f"Remaining: {usage.remaining}")
    if not usage.allowed:
        print("Daily limit reached. Upgrade for more practice.")
    return 0


def run_command(args: argparse.Namespace, context: AppContext) -> int:
    """Run one command; API failures are reported, not raised."""
    try:
        if args.command == "transcribe":
            return run_transcribe(context)
        if args.command == "rehearse":
            return run_rehearse(context, args.scenario_id)
        if args.command == "analyze":
            return run_analyze(context, args.prompt, args.category)
        if args.command == "duo":
            return run_duo(context, args.session_id)
        if args.command == "usage":
            return run_usage(context)
    except APIError as e:
        logger.error(f"{args.command} failed: {e}")
        context.notifier.show_notification(
            "Request failed", format_user_error(str(e)), variant="destructive"
        )
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.list_devices:
        list_audio_devices()
        return 0

    if args.command is None:
        build_parser().print_help()
        return 2

    config = ClientConfig(Path(args.config) if args.config else None)

    try:
        setup_logging(
            verbose=args.verbose or config.verbose, component="cli", wipe_on_startup=True
        )
    except Exception as e:
        print(f"WARNING: Failed to set up logging: {e}", file=sys.stderr)

    if args.base_url:
        config.set("server", "base_url", value=args.base_url)
    if args.token:
        config.token = args.token
    if args.device is not None:
        config.set("recording", "device_index", value=args.device)

    logger.info(f"Mirror Play client v{__version__} -> {config.base_url}")

    with AppContext(config, ConsoleNotifier()) as context:
        return run_command(args, context)


if __name__ == "__main__":
    sys.exit(main())
