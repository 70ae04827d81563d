"""
frontends — long-running ways to invoke a script.

Public API
──────────
create_app()    — FastAPI app that evaluates the script per POST request
serve()         — run create_app() under uvicorn
run_schedule()  — evaluate the script on a cron schedule
"""

from lam.frontends.schedule import run_schedule
from lam.frontends.serve import create_app, serve

__all__ = ["create_app", "serve", "run_schedule"]
