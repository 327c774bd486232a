"""Command-line entry point for the Vision Assist camera assistant."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys
from typing import Any

from config import ConfigController
from core.errors import InputUnavailable
from core.logging import enable_file_logging, log_error, log_info, logger, set_level
from hardware import FrameCapturer
from interaction import SessionConfig, SpeechInput, SpeechOutput, VoiceSession
from vision import AutoCenterLoop, DetectionResult, ResponseParser, build_vision_client
from vision.auto_center import PHOTO_TAKEN_MESSAGE


def configure_logging(level_name: str) -> None:
    """Configure application logging."""

    level = set_level(level_name)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Frame a described object with the camera and take the photo."
    )
    parser.add_argument(
        "--mode",
        choices=("voice", "auto", "detect"),
        default="voice",
        help="voice: wake word session; auto: center --target; detect: one query.",
    )
    parser.add_argument("--target", type=str, default="", help="Object to look for.")
    parser.add_argument(
        "--provider",
        choices=("openai", "gemini"),
        help="Override the configured vision proxy.",
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    args = parser.parse_args(argv)
    if args.mode == "auto" and not args.target.strip():
        parser.error("--target is required for --mode auto")
    return args


def _print_feedback(message: str, result: DetectionResult | None) -> None:
    log_info(f"[FEEDBACK] {message}", style="bold cyan")


def _start_speech_output(config: dict[str, Any]) -> SpeechOutput | None:
    speech_output = SpeechOutput.from_config(config)
    try:
        speech_output.start()
    except RuntimeError as exc:
        logger.warning("Speech output unavailable: %s", exc)
        return None
    return speech_output


async def run_auto(config: dict[str, Any], target: str, provider: str | None) -> int:
    auto_cfg = config.get("auto_center") or {}
    capturer = FrameCapturer.from_config(config)
    client = build_vision_client(config, provider)
    speech_output = _start_speech_output(config) if auto_cfg.get("speak_feedback") else None
    captured = asyncio.Event()

    loop = AutoCenterLoop(
        capturer,
        client,
        interval_s=float(auto_cfg.get("interval_s", 3.0)),
        parser=ResponseParser(int(auto_cfg.get("history_size", 3))),
        speaker=speech_output,
        speak_feedback=speech_output is not None,
        on_feedback=_print_feedback,
        on_captured=lambda _photo: captured.set(),
    )
    try:
        capturer.start()
        loop.start(target)
        await captured.wait()
        photo = loop.photo
        if photo is not None:
            log_info(f"Photo captured: {photo.width}x{photo.height}", style="bold green")
        if speech_output is not None:
            speech_output.speak(PHOTO_TAKEN_MESSAGE)
            await asyncio.sleep(2.0)
        return 0
    finally:
        loop.stop()
        capturer.stop()
        if speech_output is not None:
            speech_output.close()


async def run_detect(config: dict[str, Any], target: str, provider: str | None) -> int:
    auto_cfg = config.get("auto_center") or {}
    capturer = FrameCapturer.from_config(config)
    loop = AutoCenterLoop(
        capturer,
        build_vision_client(config, provider),
        parser=ResponseParser(int(auto_cfg.get("history_size", 3))),
        on_feedback=_print_feedback,
    )
    try:
        capturer.start()
        result = None
        for _attempt in range(10):
            result = await loop.detect_once(target)
            if result is not None or loop.feedback != "Camera is not ready yet.":
                break
            await asyncio.sleep(0.2)
    finally:
        capturer.stop()
    return 0 if result is not None else 1


async def run_voice(config: dict[str, Any], provider: str | None) -> int:
    speech_output = SpeechOutput.from_config(config)
    auto_cfg = config.get("auto_center") or {}
    session = VoiceSession(
        SpeechInput.from_config(config),
        speech_output,
        FrameCapturer.from_config(config),
        build_vision_client(config, provider),
        config=SessionConfig.from_config(config),
        parser=ResponseParser(int(auto_cfg.get("history_size", 3))),
        on_feedback=_print_feedback,
    )
    await session.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    config_controller = ConfigController.get_instance()
    config = config_controller.get_config()
    configure_logging(config.get("logging_level", "INFO"))
    args = parse_args(argv)
    if args.diagnostics:
        from config.diagnostics import probe as config_probe
        from diagnostics.runner import exit_code, format_results, run_diagnostics
        from hardware.diagnostics import probe as camera_probe
        from interaction.diagnostics import probe as speech_probe
        from vision.diagnostics import probe as vision_probe

        results = run_diagnostics(
            [
                config_probe,
                camera_probe,
                speech_probe,
                lambda: vision_probe(config, args.provider),
            ]
        )
        print(format_results(results))
        return exit_code(results)

    if config.get("file_logging_enabled", False):
        log_file_path = Path(str(config.get("log_file", "./var/log/vision_assist.log")))
        enable_file_logging(log_file_path)
        logger.info("Writing logs to %s", log_file_path)

    try:
        if args.mode == "auto":
            return asyncio.run(run_auto(config, args.target.strip(), args.provider))
        if args.mode == "detect":
            return asyncio.run(run_detect(config, args.target.strip(), args.provider))
        return asyncio.run(run_voice(config, args.provider))
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
    except InputUnavailable as exc:
        log_error(f"Input unavailable: {exc}")
        return 1
    except ValueError as exc:
        log_error(str(exc))
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
