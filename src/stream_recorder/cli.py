import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from stream_recorder.config import RecorderConfig
from stream_recorder.log_format import configure_logging

ENV_FILE_PATH = Path.home() / ".config" / "stream-recorder" / "env"


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            value = value.strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stream-recorder",
        description="Record the microphone to WAV while streaming it to a realtime transcription service",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--no-color", action="store_true", help="Plain log output")

    subparsers = parser.add_subparsers(dest="command")

    record_parser = subparsers.add_parser("record", help="Record one session (default)")
    record_parser.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds",
    )
    record_parser.add_argument("--device", help="Input device name or index")
    record_parser.add_argument("--sample-rate", type=int, help="Sample rate in Hz")
    record_parser.add_argument("--output-dir", help="Directory for recordings")

    subparsers.add_parser("devices", help="List audio input devices")
    subparsers.add_parser("check", help="Run startup health checks")
    return parser


def main(argv: list[str] | None = None) -> None:
    _load_env_file()
    parser = build_parser()
    args = parser.parse_args(argv)

    config = RecorderConfig()
    configure_logging(verbose=args.verbose, log_file=config.log_file, colored=not args.no_color)

    if args.command == "devices":
        sys.exit(_list_devices())
    if args.command == "check":
        sys.exit(_run_checks(config))

    if getattr(args, "device", None):
        config.capture_device = args.device
    if getattr(args, "sample_rate", None):
        config.sample_rate = args.sample_rate
    if getattr(args, "output_dir", None):
        config.storage_dir = args.output_dir

    sys.exit(asyncio.run(_run_record(config, getattr(args, "duration", None))))


def _list_devices() -> int:
    from stream_recorder.adapters.sounddevice_audio import list_input_devices

    devices = list_input_devices()
    if not devices:
        print("No input devices found", file=sys.stderr)
        return 1
    for index, name, channels, default_rate in devices:
        print(f"{index:>3}  {name}  ({channels} ch, {default_rate:.0f} Hz)")
    return 0


def _run_checks(config: RecorderConfig) -> int:
    from stream_recorder.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    return 1 if has_critical_failures(results) else 0


async def _run_record(config: RecorderConfig, duration: float | None) -> int:
    from stream_recorder.errors import StreamRecorderError
    from stream_recorder.factory import create_controller
    from stream_recorder.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting")
        return 1

    controller = create_controller(config)

    stop_event = asyncio.Event()
    stop_triggered = False

    def handle_signal() -> None:
        nonlocal stop_triggered
        if stop_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        stop_triggered = True
        logging.info("Stopping...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    transcripts = controller.transcripts()

    async def print_transcripts() -> None:
        async for event in transcripts:
            marker = "final" if event.is_final else "....."
            print(f"[{marker}] {event.text}", flush=True)

    printer_task = asyncio.create_task(print_transcripts())

    try:
        await controller.start()
    except StreamRecorderError as exc:
        print(f"Could not start recording: {exc}", file=sys.stderr)
        await _finish_printer(printer_task)
        return 1

    try:
        if duration:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
            except asyncio.TimeoutError:
                logging.info("Duration of %.1fs reached", duration)
        else:
            await stop_event.wait()
    finally:
        container = await controller.stop()
        await _finish_printer(printer_task)

    if container is None:
        print(f"No recording produced ({controller.last_outcome.name.lower()})", file=sys.stderr)
        return 1

    if controller.last_final_transcript:
        print(f"Transcript: {controller.last_final_transcript}")
    print(container)
    return 0


async def _finish_printer(printer_task: asyncio.Task) -> None:
    try:
        await asyncio.wait_for(printer_task, timeout=1.0)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        pass


if __name__ == "__main__":
    main()
