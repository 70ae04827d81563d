"""
HTTP front-end: every ``POST /`` evaluates the script once.

The request body is the script's input and the rendered return value is the
response body.  Script failures answer 400 with an empty body (408 for a
timeout); details go to the log, never to the client.

Usage::

    app = create_app(Script(source, "hello.lua"), Evaluator(store, config))
    serve(app, "127.0.0.1:3000")
"""

import logging

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool

from lam.engine import Script
from lam.evaluator import ErrorKind, Evaluator
from lam.exceptions import LamError, ValueConversionError
from lam.value import String, Table, value_from_plain

__all__ = ["create_app", "serve", "parse_bind"]

logger = logging.getLogger(__name__)

_STATUS = {ErrorKind.TIMEOUT: 408}


def _request_value(request: Request) -> Table:
    """Describe *request* for require('@lam').request."""
    return value_from_plain({
        "method":  request.method,
        "path":    request.url.path,
        "query":   dict(request.query_params),
        "headers": {k.lower(): v for k, v in request.headers.items()},
    })


def create_app(script: Script, evaluator: Evaluator) -> FastAPI:
    """Build the FastAPI app serving *script*."""
    if evaluator.store is None:
        logger.warning("No store configured; store calls from the script return nil")
    app = FastAPI(title="lam", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post("/")
    async def index(request: Request) -> Response:
        body = await request.body()
        outcome = await run_in_threadpool(
            evaluator.evaluate, script, body, None, _request_value(request)
        )
        if not outcome.ok:
            logger.error("%s failed: %s", script.chunkname, outcome.error)
            return Response(status_code=_STATUS.get(outcome.error.kind, 400))
        value = outcome.value
        if isinstance(value, String):
            return Response(content=value.value, media_type="text/plain")
        media_type = "application/json" if isinstance(value, Table) else "text/plain"
        try:
            content = value.render()
        except ValueConversionError as exc:
            logger.error("%s returned a value that cannot be rendered: %s", script.chunkname, exc)
            return Response(status_code=400)
        return Response(content=content, media_type=media_type)

    app.state.script = script
    app.state.evaluator = evaluator
    return app


def parse_bind(bind: str) -> tuple[str, int]:
    """'127.0.0.1:3000' → ('127.0.0.1', 3000)."""
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise LamError(f"invalid bind address {bind!r}, expected HOST:PORT")
    return host or "127.0.0.1", int(port)


def serve(app: FastAPI, bind: str = "127.0.0.1:3000", log_level: str = "info") -> None:
    """Serve *app* until interrupted."""
    host, port = parse_bind(bind)
    logger.info("Serving %s on %s:%d", app.state.script.chunkname, host, port)
    uvicorn.run(app, host=host, port=port, log_level=log_level)
