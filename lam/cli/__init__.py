"""
cli — command-line interface for lam.

Entry points
────────────
  python -m lam   (via lam/__main__.py)
  lam             (via pyproject.toml [project.scripts])

Subcommands: eval | check | serve | schedule | store
"""

from lam.cli.main import build_parser, cmd_check, cmd_eval, main

__all__ = ["build_parser", "cmd_check", "cmd_eval", "main"]
