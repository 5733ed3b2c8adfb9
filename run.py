#!/usr/bin/env python3
"""
bailabeat - Salsa beat counter

Listens to the microphone, detects beats and tempo, and shows the
dance count (1 2 3 - 5 6 7 -) in the console.
"""

import argparse
import cProfile
import sys

from audio_engine import AudioEngine
from config_persistence import load_config, save_config
from listening_session import DisplayState, ListeningSession
from logging_utils import log_event, set_log_level


def format_state(state: DisplayState) -> str:
    """One console line for the current count."""
    if state.no_music_detected:
        return "No music detected - play some salsa!"
    if state.current_beat == 0:
        return "Listening..."
    count = "-" if state.is_dash_beat else str(state.current_beat)
    marker = "*" if state.is_downbeat else " "
    bpm = f"{state.bpm} BPM" if state.bpm else "--- BPM"
    return f"[{marker}{count}] cycle {state.cycle}  {bpm}"


def print_state(state: DisplayState) -> None:
    print(format_state(state).ljust(60), end='\r', flush=True)


def run_app(args: argparse.Namespace) -> int:
    config = load_config()
    set_log_level(args.log_level or config.log_level)
    if args.device is not None:
        config.audio.device_index = args.device

    if args.save_config:
        return 0 if save_config(config) else 1

    engine = AudioEngine(config.audio)
    session = ListeningSession(config, engine, on_state=print_state)
    try:
        session.start()
    except Exception as e:
        log_event("ERROR", "App", "Could not start listening", error=e)
        return 1

    try:
        session.run()
    except KeyboardInterrupt:
        print()
    finally:
        session.stop()
    return 0


def list_devices() -> int:
    for d in AudioEngine.list_devices():
        print(f"[{d['index']}] {d['name']}  (inputs={d['inputs']}, default SR={d['sample_rate']} Hz)")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run bailabeat")
    parser.add_argument("--device", type=int, default=None, help="Input device index (default: system default)")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (default: from config)")
    parser.add_argument("--save-config", action="store_true", help="Write the effective config file and exit")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    if args.list_devices:
        sys.exit(list_devices())

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_app(args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_app(args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
