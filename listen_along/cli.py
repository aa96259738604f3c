"""Command-line interface for the listen-along alignment engine.

WHY: Tuning alignment is easiest against real files: load a text and
its word timings, ask where a passage is, where a seek lands, or watch
highlighting progress through the whole recording without a browser.

HOW: argparse with four subcommands:
  locate   — find a passage (or one of the document's paragraphs)
  seek     — resolve the highlight position for a playback time
  simulate — play the document on a simulated audio clock and print
             each word as it is highlighted
  serve    — run the HTTP API with uvicorn
Text files ending in .html/.htm are tokenized by <p> paragraphs, all
others by blank-line paragraphs.

RULES:
- Results go to stdout (JSON for locate/seek); status goes to stderr
- --verbose enables DEBUG logging for the engine
- Invalid timing files exit with status 2 and the validation message
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from listen_along.adapters.audio_engine import SimulatedAudioEngine
from listen_along.config import DEFAULT_OFFSET_MS, TICK_HZ
from listen_along.core.timing import TimingFormatError
from listen_along.session import ReadAlongSession


def _status(msg: str) -> None:
    """Print a status message to stderr."""
    print(msg, file=sys.stderr, flush=True)


def _load_session(args: argparse.Namespace) -> ReadAlongSession:
    session = ReadAlongSession.from_files(args.text_file, args.timings_file, args.offset_ms)
    _status("Loaded {} tokens and {} timings".format(
        len(session.document), len(session.matcher.events),
    ))
    return session


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_locate(args: argparse.Namespace) -> int:
    session = _load_session(args)
    if args.min_probability is not None:
        session.locator.set_min_probability_threshold(args.min_probability)

    if args.paragraph is not None:
        match = session.locator.locate_paragraph(args.paragraph)
    elif args.query:
        attempts = session.locator.locate_first(args.query)
        match = attempts[-1].result
        if len(attempts) > 1:
            _status("Tried {} passages".format(len(attempts)))
    else:
        for i, text in enumerate(session.locator.extract_paragraphs()):
            print("{}\t{}".format(i, text))
        return 0

    result = {
        "success": match.success,
        "start": match.start,
        "end": match.end,
        "probability": round(match.probability, 4),
        "time_s": match.timestamp.time_s if match.timestamp else None,
        "error": match.error,
    }
    print(json.dumps(result, indent=2))
    return 0 if match.success else 1


def _cmd_seek(args: argparse.Namespace) -> int:
    session = _load_session(args)
    resolution = session.seek(args.time)
    words = session.document.tokens
    current = words[resolution.text_index].text if resolution.text_index >= 0 else None
    print(json.dumps({
        "time_s": resolution.time_s,
        "strategy": resolution.strategy.value,
        "text_index": resolution.text_index,
        "word": current,
        "timing_index": resolution.timing_index,
        "probability": round(resolution.probability, 4),
    }, indent=2))
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    session = _load_session(args)
    duration = args.duration or session.duration
    if not duration:
        duration = len(session.document) / session.settings.fallback_words_per_second
    interval = 1.0 / args.tick_hz

    now = [0.0]
    engine = SimulatedAudioEngine(duration, clock=lambda: now[0])
    session.bind(engine)
    if args.start:
        engine.seek_to(args.start)
    engine.set_rate(args.rate)
    engine.play()
    _status("Simulating {:.1f}s of audio at {:.0f} Hz".format(duration, args.tick_hz))

    tokens = session.document.tokens
    while session.ticks.running:
        now[0] += interval
        if args.realtime:
            time.sleep(interval)
        result = session.poll()
        if result is None:
            break
        for index in result.highlighted:
            print("{:8.3f}s  {:5d}  {}".format(result.time_s, index, tokens[index].text))

    state = session.controller.state
    _status("Highlighted {}/{} tokens".format(len(state.highlighted), len(tokens)))
    session.unbind()
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from listen_along.server.app import run_api
    run_api(host=args.host, port=args.port)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_document_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "text_file",
        help="Reference text (.txt with blank-line paragraphs, or .html with <p> paragraphs).",
    )
    parser.add_argument(
        "timings_file",
        nargs="?",
        default=None,
        help="JSON array of {word, time_start, time_end} records in seconds.",
    )
    parser.add_argument(
        "--offset-ms",
        type=int,
        default=DEFAULT_OFFSET_MS,
        help="Millisecond offset applied to every timing (default: %(default)s).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="listen_along",
        description="Align a reference text with word-level audio timings.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log engine decisions to stderr.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    locate = sub.add_parser("locate", help="Locate a passage in the text and audio.")
    _add_document_args(locate)
    locate.add_argument(
        "-q", "--query",
        action="append",
        default=None,
        help="Passage text. Repeat to try several passages in order. "
             "Without --query or --paragraph, lists the document's paragraphs.",
    )
    locate.add_argument(
        "-p", "--paragraph",
        type=int,
        default=None,
        help="Locate the document's own paragraph with this index.",
    )
    locate.add_argument(
        "--min-probability",
        type=float,
        default=None,
        help="Minimum window score to accept (clamped to [0, 1]).",
    )
    locate.set_defaults(func=_cmd_locate)

    seek = sub.add_parser("seek", help="Resolve the highlight position for a time.")
    _add_document_args(seek)
    seek.add_argument("--time", type=float, required=True, help="Playback time in seconds.")
    seek.set_defaults(func=_cmd_seek)

    simulate = sub.add_parser("simulate", help="Play the document on a simulated clock.")
    _add_document_args(simulate)
    simulate.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Audio duration in seconds (default: end of the last timing).",
    )
    simulate.add_argument("--start", type=float, default=0.0, help="Start position in seconds.")
    simulate.add_argument("--rate", type=float, default=1.0, help="Playback rate.")
    simulate.add_argument(
        "--tick-hz",
        type=float,
        default=TICK_HZ,
        help="Ticks per second of audio (default: %(default)s).",
    )
    simulate.add_argument(
        "--realtime",
        action="store_true",
        help="Sleep between ticks instead of running as fast as possible.",
    )
    simulate.set_defaults(func=_cmd_simulate)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except TimingFormatError as exc:
        _status("Invalid timings: {}".format(exc))
        return 2
    except FileNotFoundError as exc:
        _status("File not found: {}".format(exc.filename))
        return 2


if __name__ == "__main__":
    sys.exit(main())
