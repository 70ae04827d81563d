"""Allow ``python -m lam``."""

from lam.cli.main import main

raise SystemExit(main())
