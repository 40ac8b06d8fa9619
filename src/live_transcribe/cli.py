import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from live_transcribe.config import TranscribeConfig
from live_transcribe.log_format import ColoredFormatter

ENV_FILE_PATH = Path.home() / ".config" / "live-transcribe" / "env"

# third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("websockets", "httpcore", "httpx")


def _parse_env_line(raw: str) -> tuple[str, str] | None:
    entry = raw.strip()
    if not entry or entry.startswith("#") or "=" not in entry:
        return None
    key, _, value = entry.partition("=")
    return key.strip(), value.strip().strip("'\"")


def _load_env_file() -> None:
    """Export KEY=value pairs from the user env file without overriding the environment."""
    if not ENV_FILE_PATH.is_file():
        return
    for raw in ENV_FILE_PATH.read_text().splitlines():
        pair = _parse_env_line(raw)
        if pair:
            os.environ.setdefault(*pair)


def _setup_logging(verbose: bool, log_file: str) -> None:
    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-5s %(name)s: %(message)s", datefmt="%H:%M:%S")
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler])

    third_party_level = logging.INFO if verbose else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live microphone transcription client")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--host", help="Recognition server host")
    parser.add_argument("--port", type=int, help="Recognition server port")
    parser.add_argument("--device", help="Input device index or name substring")
    parser.add_argument("--no-wait", action="store_true", help="Skip waiting for the backend readiness probe")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("devices", help="List audio input devices")
    subparsers.add_parser("probe", help="Check once whether the backend is reachable")
    return parser


def main() -> None:
    _load_env_file()
    args = build_parser().parse_args()

    config = TranscribeConfig()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.device:
        config.capture_device = args.device

    _setup_logging(args.verbose, config.log_file)

    if args.command == "devices":
        _print_devices()
    elif args.command == "probe":
        sys.exit(asyncio.run(_run_probe(config)))
    else:
        asyncio.run(_run_client(config, wait=not args.no_wait))


def _print_devices() -> None:
    from live_transcribe.adapters.sounddevice_audio import list_input_devices

    devices = list_input_devices()
    if not devices:
        print("No input devices found", file=sys.stderr)
        sys.exit(1)
    for dev in devices:
        marker = "*" if dev.is_default else " "
        print(f"{marker} {dev.index:>3}  {dev.name}  ({dev.channels} ch, {int(dev.default_sample_rate)} Hz)")


async def _run_probe(config: TranscribeConfig) -> int:
    from live_transcribe.health import probe_backend

    result = await probe_backend(config.http_url, timeout=config.readiness_probe_timeout_seconds)
    print(f"{config.http_url}: {result.detail}")
    return 0 if result.passed else 1


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """First SIGINT/SIGTERM stops gracefully, a second one exits at once."""
    received = 0

    def on_signal(sig: signal.Signals) -> None:
        nonlocal received
        received += 1
        if received > 1:
            logging.warning("Second %s, exiting immediately", sig.name)
            sys.exit(1)
        logging.info("Received %s, stopping", sig.name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal, sig)


async def _handle_keys(controller, keys: asyncio.Queue, stop: asyncio.Event) -> None:
    while not stop.is_set():
        line = await keys.get()
        if not line:
            # stdin closed
            stop.set()
            return
        key = line.strip().lower()
        if key == "q":
            stop.set()
        elif key == "c":
            controller.clear_transcript()
        else:
            await controller.toggle()


async def _tick(controller, display) -> None:
    while True:
        display.show_timer(controller.elapsed_label())
        await asyncio.sleep(1.0)


async def _run_client(config: TranscribeConfig, wait: bool = True) -> None:
    from live_transcribe.adapters.terminal_display import TerminalDisplay
    from live_transcribe.factory import create_controller
    from live_transcribe.health import has_critical_failures, run_startup_checks, wait_for_backend

    if has_critical_failures(run_startup_checks(config)):
        logging.error("No usable input device, not starting")
        sys.exit(1)

    if wait and not await wait_for_backend(
        config.http_url,
        attempts=config.readiness_probe_attempts,
        delay=config.readiness_probe_delay,
        timeout=config.readiness_probe_timeout_seconds,
    ):
        sys.exit(1)

    controller = create_controller(config)
    display = TerminalDisplay(controller.view)
    display.attach()
    controller.on_status = display.show_status

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    _install_signal_handlers(loop, stop)

    keys: asyncio.Queue[str] = asyncio.Queue()
    stdin_fd = sys.stdin.fileno()
    loop.add_reader(stdin_fd, lambda: keys.put_nowait(sys.stdin.readline()))

    display.show_status("Ready", "info")
    tasks = [
        asyncio.create_task(controller.run()),
        asyncio.create_task(_handle_keys(controller, keys, stop)),
        asyncio.create_task(_tick(controller, display)),
    ]

    try:
        await stop.wait()
    finally:
        loop.remove_reader(stdin_fd)
        try:
            await asyncio.wait_for(controller.shutdown(), timeout=5.0)
        except asyncio.TimeoutError:
            logging.warning("Session did not shut down within 5s")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
