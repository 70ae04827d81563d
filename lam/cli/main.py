"""
CLI entry point for lam.

Usage
─────
  # Evaluate a script; stdin is the script's input
  echo 'world' | lam eval --file hello.lua
  lam eval --file count.lua --store ./store.db --run-migrations --json

  # Syntax check only
  lam check --file hello.lua

  # Serve the script over HTTP (POST / with the input as body)
  lam serve --file hello.lua --bind 127.0.0.1:3000 --store ./store.db

  # Run the script on a cron schedule
  lam schedule --file job.lua --cron "*/5 * * * *" --bail 3 --initial-run

  # Operate on the store
  lam store migrate --store ./store.db
  lam store list --store ./store.db
  lam store put --store ./store.db --name a --value '{"n":1}'

Subcommands are implemented as standalone functions (cmd_eval, cmd_check,
cmd_serve, cmd_schedule, cmd_store_*) so they can be unit-tested without
invoking argparse.
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Optional

from lam import __version__
from lam.config import RuntimeConfig
from lam.engine import Script, check_syntax
from lam.evaluator import ErrorKind, Evaluator, Outcome
from lam.exceptions import LamError, ScriptCompileError, ValueConversionError
from lam.store import Store
from lam.value import String, value_from_json, value_to_json

__all__ = [
    "build_parser",
    "cmd_eval",
    "cmd_check",
    "cmd_serve",
    "cmd_schedule",
    "cmd_store_migrate",
    "cmd_store_list",
    "cmd_store_get",
    "cmd_store_put",
    "cmd_store_delete",
    "render_error",
    "main",
]

logger = logging.getLogger(__name__)

# "name:12: message" as produced by the Lua compiler and runtime
_LINE_RE = re.compile(r":(\d+):")

_RED = "\x1b[31m"
_DIM = "\x1b[2m"
_RESET = "\x1b[0m"


# ── Argument parser ────────────────────────────────────────────────────────────


def _add_file(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--file",
        required=True,
        metavar="PATH",
        help="Script file, or - to read the script from stdin",
    )


def _add_store(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--store",
        default=None,
        dest="store_path",
        metavar="PATH",
        help="SQLite store path (default: $LAM_STORE_PATH, else in-memory)",
    )
    parser.add_argument(
        "--run-migrations",
        action="store_true",
        default=None,
        help="Migrate the store schema before running",
    )


def _add_timeout(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Wall-clock limit per evaluation, 0 for none (default: $LAM_TIMEOUT, else 30)",
    )


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Subcommands: eval | check | serve | schedule | store
    """
    parser = argparse.ArgumentParser(
        prog="lam",
        description="Run Lua scripts in a sandbox with a persistent key-value store",
    )
    parser.add_argument("--version", action="version", version=f"lam {__version__}")
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable verbose debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Do not highlight error reports with ANSI colors",
    )

    sub = parser.add_subparsers(dest="subcommand")

    # ── eval ──────────────────────────────────────────────────────────────
    ev = sub.add_parser("eval", help="Evaluate a script once, stdin as input")
    _add_file(ev)
    _add_timeout(ev)
    _add_store(ev)
    ev.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the return value as JSON (strings quoted)",
    )

    # ── check ─────────────────────────────────────────────────────────────
    chk = sub.add_parser("check", help="Check the syntax of a script")
    _add_file(chk)

    # ── serve ─────────────────────────────────────────────────────────────
    srv = sub.add_parser("serve", help="Evaluate the script for every POST /")
    _add_file(srv)
    _add_timeout(srv)
    _add_store(srv)
    srv.add_argument(
        "--bind",
        default="127.0.0.1:3000",
        metavar="HOST:PORT",
        help="Address to listen on (default: 127.0.0.1:3000)",
    )

    # ── schedule ──────────────────────────────────────────────────────────
    sch = sub.add_parser("schedule", help="Evaluate the script on a cron schedule")
    _add_file(sch)
    _add_timeout(sch)
    _add_store(sch)
    sch.add_argument(
        "--cron",
        required=True,
        metavar="EXPR",
        help='Cron expression, e.g. "*/5 * * * *"',
    )
    sch.add_argument(
        "--bail",
        type=int,
        default=0,
        metavar="N",
        help="Stop after N consecutive failures (default: 0 = never)",
    )
    sch.add_argument(
        "--initial-run",
        action="store_true",
        default=False,
        help="Run once immediately before following the schedule",
    )

    # ── store ─────────────────────────────────────────────────────────────
    st = sub.add_parser("store", help="Inspect or modify the store")
    st_sub = st.add_subparsers(dest="store_command")
    for name, help_text in (
        ("migrate", "Apply pending schema migrations"),
        ("list", "List stored entries"),
        ("get", "Print the value of one entry as JSON"),
        ("put", "Set an entry from a JSON value"),
        ("delete", "Remove one entry"),
    ):
        cmd = st_sub.add_parser(name, help=help_text)
        cmd.add_argument(
            "--store",
            required=True,
            dest="store_path",
            metavar="PATH",
            help="SQLite store path",
        )
        if name in ("get", "put", "delete"):
            cmd.add_argument("--name", required=True, metavar="NAME", help="Entry name")
        if name == "put":
            cmd.add_argument(
                "--value",
                required=True,
                metavar="JSON",
                help="JSON value, or - to read it from stdin",
            )

    return parser


# ── Helpers ───────────────────────────────────────────────────────────────────


def _read_script(path: str) -> Script:
    """Load the script named by --file ("-" = stdin)."""
    if path == "-":
        return Script(sys.stdin.read(), "(stdin)")
    try:
        source = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise LamError(f"cannot read script {path}: {exc}") from exc
    return Script(source, Path(path).name)


def _write_bytes(stream, data: bytes) -> None:
    if not data:
        return
    stream.flush()
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        stream.write(data.decode("utf-8", "replace"))
    else:
        buffer.write(data)
        buffer.flush()


def _open_store(config: RuntimeConfig) -> Store:
    if config.store_path is None:
        logger.warning(
            "No store path specified; an in-memory store is used and values "
            "are lost when the process ends"
        )
    return Store.open(
        config.store_path,
        run_migrations=config.run_migrations,
        lock_timeout=config.lock_timeout,
    )


def _config(ns: argparse.Namespace) -> RuntimeConfig:
    config = RuntimeConfig.from_env()
    return config.with_overrides(
        timeout=getattr(ns, "timeout", None),
        store_path=getattr(ns, "store_path", None),
        run_migrations=getattr(ns, "run_migrations", None),
    )


def render_error(script: Script, message: str, color: bool = True) -> str:
    """
    Format *message* with the offending source line when it names one.

    Example (color off)::

        hello.lua:2: unexpected symbol near '+'
           1 | local a = 1
        >  2 | return a +
           3 |
    """
    match = _LINE_RE.search(message)
    head = f"{_RED}{message}{_RESET}" if color else message
    if not match:
        return head
    lineno = int(match.group(1))
    lines = script.source.splitlines()
    if not 1 <= lineno <= len(lines):
        return head
    out = [head]
    width = len(str(min(lineno + 1, len(lines))))
    for n in range(max(1, lineno - 1), min(len(lines), lineno + 1) + 1):
        marker = ">" if n == lineno else " "
        row = f"{marker} {n:>{width}} | {lines[n - 1]}"
        if color:
            row = f"{_RED}{row}{_RESET}" if n == lineno else f"{_DIM}{row}{_RESET}"
        out.append(row)
    return "\n".join(out)


# ── Command implementations ───────────────────────────────────────────────────


def cmd_eval(
    script: Script,
    evaluator: Evaluator,
    input: bytes = b"",
    as_json: bool = False,
    color: bool = True,
) -> Outcome:
    """
    Evaluate *script* once and print its output and return value.

    Captured stdout/stderr are replayed first; the return value follows on
    stdout without a trailing newline.  Errors are reported on stderr.
    """
    outcome = evaluator.evaluate(script, input=input)
    _write_bytes(sys.stdout, outcome.stdout)
    _write_bytes(sys.stderr, outcome.stderr)
    if not outcome.ok:
        message = outcome.error.message
        if outcome.error.kind in (ErrorKind.COMPILE, ErrorKind.RUNTIME):
            message = render_error(script, message, color)
        print(f"Error: {message}", file=sys.stderr)
        return outcome

    value = outcome.value
    if as_json:
        try:
            _write_bytes(sys.stdout, value_to_json(value).encode("utf-8", "surrogateescape"))
        except ValueConversionError as exc:
            raise LamError(f"cannot print value as JSON: {exc}") from exc
    elif isinstance(value, String):
        _write_bytes(sys.stdout, value.value)
    else:
        _write_bytes(sys.stdout, value.render().encode("utf-8", "surrogateescape"))
    return outcome


def cmd_check(script: Script, color: bool = True) -> bool:
    """Syntax-check *script*; prints the report and returns False on error."""
    try:
        check_syntax(script.source, script.name)
    except ScriptCompileError as exc:
        print(render_error(script, str(exc), color), file=sys.stderr)
        return False
    logger.info("%s: syntax OK", script.chunkname)
    return True


def cmd_serve(script: Script, config: RuntimeConfig, bind: str) -> None:
    """Serve *script* over HTTP until interrupted."""
    from lam.frontends.serve import create_app, serve

    store = _open_store(config)
    evaluator = Evaluator(store=store, config=config)
    try:
        serve(create_app(script, evaluator), bind)
    finally:
        store.close()


def cmd_schedule(
    script: Script,
    config: RuntimeConfig,
    expression: str,
    bail: int = 0,
    initial_run: bool = False,
) -> int:
    """Run *script* on a cron schedule; returns the final failure streak."""
    from lam.frontends.schedule import run_schedule

    store = _open_store(config)
    evaluator = Evaluator(store=store, config=config)
    try:
        return run_schedule(script, evaluator, expression, bail=bail, initial_run=initial_run)
    finally:
        store.close()


def cmd_store_migrate(store: Store) -> int:
    version = store.migrate()
    print(f"Store {store.path} is at schema version {version}")
    return version


def cmd_store_list(store: Store) -> None:
    """Print one line per entry."""
    entries = store.list()
    if not entries:
        print("0 entries found.")
        return
    for entry in entries:
        updated = entry.updated.isoformat() if entry.updated else "-"
        print(f"{entry.name:<30} {entry.type_hint:<8} {entry.size:>8}  {updated}")


def cmd_store_get(store: Store, name: str) -> None:
    value = store.get(name)
    if value is None:
        raise LamError(f"no entry named {name!r}")
    print(value_to_json(value))


def cmd_store_put(store: Store, name: str, raw: str) -> None:
    if raw == "-":
        raw = sys.stdin.read()
    try:
        value = value_from_json(raw)
    except ValueConversionError as exc:
        raise LamError(f"--value is not JSON: {exc}") from exc
    store.put(name, value)
    logger.info("Stored %s (%s)", name, value.type_hint)


def cmd_store_delete(store: Store, name: str) -> None:
    if not store.delete(name):
        raise LamError(f"no entry named {name!r}")
    logger.info("Deleted %s", name)


def _run_store_command(ns: argparse.Namespace) -> None:
    with Store.open(ns.store_path, run_migrations=False) as store:
        if ns.store_command == "migrate":
            cmd_store_migrate(store)
        elif ns.store_command == "list":
            cmd_store_list(store)
        elif ns.store_command == "get":
            cmd_store_get(store, ns.name)
        elif ns.store_command == "put":
            cmd_store_put(store, ns.name, ns.value)
        elif ns.store_command == "delete":
            cmd_store_delete(store, ns.name)


# ── Entry point ───────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point. Returns exit code."""
    parser = build_parser()
    ns = parser.parse_args(argv)

    level = logging.DEBUG if ns.debug else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    color = not ns.no_color

    if ns.subcommand is None:
        parser.print_help()
        return 0

    try:
        if ns.subcommand == "store":
            if ns.store_command is None:
                parser.parse_args(["store", "--help"])
            _run_store_command(ns)
            return 0

        script = _read_script(ns.file)

        if ns.subcommand == "check":
            return 0 if cmd_check(script, color) else 1

        config = _config(ns)

        if ns.subcommand == "eval":
            input = b"" if ns.file == "-" else sys.stdin.buffer.read()
            store = Store.open(
                config.store_path,
                run_migrations=config.run_migrations,
                lock_timeout=config.lock_timeout,
            )
            try:
                outcome = cmd_eval(
                    script,
                    Evaluator(store=store, config=config),
                    input=input,
                    as_json=ns.json,
                    color=color,
                )
            finally:
                store.close()
            return 0 if outcome.ok else 1

        if ns.subcommand == "serve":
            cmd_serve(script, config, ns.bind)
            return 0

        if ns.subcommand == "schedule":
            failures = cmd_schedule(
                script, config, ns.cron, bail=ns.bail, initial_run=ns.initial_run
            )
            return 1 if failures else 0
    except LamError as exc:
        logger.debug("%s failed", ns.subcommand, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
