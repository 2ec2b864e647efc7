# main.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from ..core.config import RowforgeConfig, TransformConfig, load_config_from_path
from ..core.engines import default_engine_registry
from ..core.errors import RowforgeError
from ..core.log import configure_logging
from ..core.runner import run_transform


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level rowforge CLI argument parser.

    Returns:
        argparse.ArgumentParser: Parser with ``run``, ``transform``, and
        ``engines`` subcommands.
    """
    parser = argparse.ArgumentParser(prog="rowforge", description="rowforge CLI")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g., DEBUG, INFO, WARNING). Overrides [logging].level.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_p = subparsers.add_parser("run", help="Run a transform from a config file")
    run_p.add_argument("-c", "--config", required=True, help="Path to config file (TOML or JSON).")
    run_p.add_argument("--override-concurrent", type=int, help="Override transform.concurrent.")
    run_p.add_argument("--var", action="append", default=[], metavar="KEY=VALUE", help="Template variable.")
    run_p.add_argument("--dry-run", action="store_true", help="Validate and print config, then exit.")

    tr_p = subparsers.add_parser("transform", help="Transform a JSONL file with an inline script")
    tr_p.add_argument("source", help="Source path or file:// URI (templates allowed).")
    script = tr_p.add_mutually_exclusive_group(required=True)
    script.add_argument("--script", help="Inline script body.")
    script.add_argument("--script-file", help="Path to a script file.")
    tr_p.add_argument("--engine", default="python", help="Script engine id (default: python).")
    tr_p.add_argument(
        "--concurrent",
        type=int,
        help="Number of parallel lanes (>= 2). Output order is not preserved.",
    )
    tr_p.add_argument("--queue-size", type=int, help="Bounded queue capacity in parallel mode.")
    tr_p.add_argument("--var", action="append", default=[], metavar="KEY=VALUE", help="Template variable.")
    tr_p.add_argument("--output-dir", help="Directory that receives the output file.")
    tr_p.add_argument("--gzip", action="store_true", help="Gzip-compress the output file.")

    subparsers.add_parser("engines", help="List available script engines")

    return parser


def _parse_vars(pairs: Sequence[str]) -> dict[str, Any]:
    """Parse ``KEY=VALUE`` pairs; values that parse as JSON keep their type."""
    out: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid --var {pair!r}; expected KEY=VALUE")
        try:
            value: Any = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        out[key.strip()] = value
    return out


def _config_from_args(args: argparse.Namespace) -> RowforgeConfig:
    cfg = RowforgeConfig(
        transform=TransformConfig(
            from_=args.source,
            script=args.script,
            script_path=args.script_file,
            engine=args.engine,
            concurrent=args.concurrent,
            queue_size=args.queue_size,
            compress=bool(args.gzip),
        )
    )
    if args.output_dir:
        cfg.storage.output_dir = str(Path(args.output_dir))
    return cfg


def _run(cfg: RowforgeConfig, variables: dict[str, Any]) -> int:
    output = run_transform(config=cfg, variables=variables)
    print(json.dumps(output.report.as_dict(), indent=2))
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    """Dispatch a parsed CLI command to the appropriate handler.

    Returns:
        int: Process exit code, 0 on success.
    """
    cmd = args.command

    if cmd == "engines":
        configure_logging(level=args.log_level or "WARNING")
        for engine_id in default_engine_registry().ids():
            print(engine_id)
        return 0

    if cmd == "run":
        cfg = load_config_from_path(args.config)
        if args.log_level:
            cfg.logging.level = args.log_level
        cfg.logging.apply()
        if args.override_concurrent is not None:
            cfg.transform.concurrent = int(args.override_concurrent)
        if args.dry_run:
            cfg.validate()
            print(json.dumps(cfg.to_dict(), indent=2))
            return 0
        return _run(cfg, _parse_vars(args.var))

    if cmd == "transform":
        cfg = _config_from_args(args)
        if args.log_level:
            cfg.logging.level = args.log_level
        cfg.logging.apply()
        return _run(cfg, _parse_vars(args.var))

    print(f"Unknown command: {cmd}", file=sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the rowforge command-line interface.

    Args:
        argv (Sequence[str] | None): Optional argument list instead of
            ``sys.argv[1:]``. Primarily useful for tests.

    Returns:
        int: Process exit code; failures print ``Error: <kind>: <message>``
        to stderr and return 1.
    """
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _dispatch(args)
    except RowforgeError as exc:
        print(f"Error: {exc.kind}: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
