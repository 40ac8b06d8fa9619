import asyncio
import logging
import shutil
from dataclasses import dataclass

import httpx
import sounddevice as sd

from live_transcribe.config import TranscribeConfig

logger = logging.getLogger(__name__)

READY_STATUS_RANGE = range(200, 500)
CRITICAL_CHECKS = {"audio_device"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


async def probe_backend(
    url: str,
    timeout: float = 3.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthCheckResult:
    name = "backend"
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        return HealthCheckResult(name=name, passed=False, detail=f"Timed out after {timeout:.1f}s")
    except httpx.HTTPError as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"Unreachable: {exc}")

    if response.status_code in READY_STATUS_RANGE:
        return HealthCheckResult(name=name, passed=True, detail=f"Reachable ({response.status_code})")
    return HealthCheckResult(
        name=name, passed=False, detail=f"Server returned status {response.status_code}"
    )


async def wait_for_backend(
    url: str,
    attempts: int = 120,
    delay: float = 2.0,
    timeout: float = 3.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    for attempt in range(1, attempts + 1):
        result = await probe_backend(url, timeout=timeout, transport=transport)
        if result.passed:
            logger.info("Backend ready at %s: %s", url, result.detail)
            return True
        logger.info("Waiting for backend (%d/%d): %s", attempt, attempts, result.detail)
        if attempt < attempts:
            await asyncio.sleep(delay)
    logger.error("Backend at %s not ready after %d attempts", url, attempts)
    return False


def run_startup_checks(config: TranscribeConfig) -> list[HealthCheckResult]:
    results = [check(config) for check in (_check_audio_device, _check_ffmpeg)]
    for result in results:
        if result.passed:
            logger.info("Startup check %s ok: %s", result.name, result.detail)
        else:
            logger.warning("Startup check %s failed: %s", result.name, result.detail)
    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    """Only a missing microphone blocks startup."""
    return any(r.name in CRITICAL_CHECKS and not r.passed for r in results)


def _describe_device(device) -> str:
    return f"'{device['name']}' at {int(device['default_samplerate'])} Hz"


def _check_audio_device(config: TranscribeConfig) -> HealthCheckResult:
    wanted = config.capture_device.lower()
    try:
        if not wanted:
            default = sd.query_devices(kind="input")
            return HealthCheckResult("audio_device", True, f"Default input {_describe_device(default)}")
        matches = [
            dev for dev in sd.query_devices()
            if dev["max_input_channels"] > 0 and wanted in dev["name"].lower()
        ]
    except sd.PortAudioError as exc:
        return HealthCheckResult("audio_device", False, f"No input devices available: {exc}")

    if not matches:
        return HealthCheckResult("audio_device", False, f"No input device matching '{config.capture_device}'")
    return HealthCheckResult("audio_device", True, _describe_device(matches[0]))


def _check_ffmpeg(config: TranscribeConfig) -> HealthCheckResult:
    path = shutil.which(config.ffmpeg_path)
    if path is None:
        return HealthCheckResult(
            "ffmpeg", False, f"'{config.ffmpeg_path}' not found, container-encoding capture unavailable"
        )
    return HealthCheckResult("ffmpeg", True, path)
