# main.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from ..core.config import SINK_KINDS, HealthStreamConfig, load_config_from_path
from .runner import ingest_files


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level healthstream CLI argument parser.

    Returns:
        argparse.ArgumentParser: Parser with ``ingest`` and ``config``
        subcommands.
    """
    parser = argparse.ArgumentParser(prog="healthstream", description="Health export chunk streamer")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g., DEBUG, INFO, WARNING). Overrides logging.level from -c.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_p = subparsers.add_parser("ingest", help="Stream XML exports into a sink.")
    ingest_p.add_argument("files", nargs="+", help="Export files to process.")
    ingest_p.add_argument("-c", "--config", help="Optional config file (TOML or JSON).")
    ingest_p.add_argument("--out", type=Path, help="Output path; overrides sink.path.")
    ingest_p.add_argument("--sink", choices=list(SINK_KINDS), help="Override sink.kind.")
    ingest_p.add_argument("--user-id", help="Override metadata.user_id.")
    ingest_p.add_argument("--document-id", help="Override metadata.document_id.")
    ingest_p.add_argument("--chunk-size", type=int, help="Override stream.chunk_size (characters).")
    ingest_p.add_argument("--max-retries", type=int, help="Override stream.max_retries.")
    ingest_p.add_argument("--timeout-ms", type=int, help="Override stream.per_attempt_timeout_ms.")
    ingest_p.add_argument("--max-workers", type=int, help="Override pipeline.max_workers.")

    config_p = subparsers.add_parser("config", help="Print the effective config as JSON.")
    config_p.add_argument("-c", "--config", help="Optional config file (TOML or JSON).")

    return parser


def _load_config(path: Optional[str]) -> HealthStreamConfig:
    if not path:
        return HealthStreamConfig()
    return load_config_from_path(path)


def _apply_overrides(cfg: HealthStreamConfig, args: argparse.Namespace) -> None:
    """Apply ``ingest`` flags to ``cfg`` in place."""
    if args.out is not None:
        cfg.sink.path = args.out
    if args.sink:
        cfg.sink.kind = args.sink
    if args.user_id:
        cfg.metadata.user_id = args.user_id
    if args.document_id:
        cfg.metadata.document_id = args.document_id
    if args.chunk_size is not None:
        cfg.stream.chunk_size = int(args.chunk_size)
    if args.max_retries is not None:
        cfg.stream.max_retries = int(args.max_retries)
    if args.timeout_ms is not None:
        cfg.stream.per_attempt_timeout_ms = int(args.timeout_ms)
    if args.max_workers is not None:
        cfg.pipeline.max_workers = int(args.max_workers)


def _dispatch(args: argparse.Namespace) -> int:
    """Run the selected subcommand and return its exit code."""
    cmd = args.command
    cfg = _load_config(getattr(args, "config", None))
    if args.log_level:
        cfg.logging.level = args.log_level
    cfg.logging.apply()

    if cmd == "ingest":
        _apply_overrides(cfg, args)
        cfg.validate()
        summary = ingest_files(args.files, cfg)
        print(json.dumps(summary.as_dict(), indent=2))
        return 0 if summary.ok else 1

    if cmd == "config":
        print(json.dumps(cfg.to_dict(), indent=2, sort_keys=True))
        return 0

    print(f"Unknown command: {cmd}", file=sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the healthstream command-line interface.

    Args:
        argv (Sequence[str] | None): Optional list of argument strings to
            parse instead of ``sys.argv[1:]``. Primarily useful for tests.

    Returns:
        int: Process exit code, where 0 indicates success and non-zero
        values indicate failure.
    """
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _dispatch(args)
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
