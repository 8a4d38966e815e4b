"""Local host for the interactions endpoint (e.g. behind a tunnel while developing).

Unlike Lambda, a web server can finish the response and keep working. Deferred
jobs are attached to the request as FastAPI background tasks: the ack is sent
first, and the server still runs the job to completion before the request is
done.

Usage:
    gamesleep-devserver --host 127.0.0.1 --port 8080

    or, with uvicorn directly:
        uvicorn gamesleep.devserver:create_app --factory --port 8080
"""

import argparse
import logging

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from .compute import Ec2Controller
from .config import Settings
from .followup import WebhookClient
from .interactions import Dispatcher, process_request
from .logs import configure, log_event
from .probe import MinecraftProbe
from .store import ActivityStore

log = logging.getLogger(__name__)


def build_dispatcher(settings):
    return Dispatcher(
        settings,
        Ec2Controller.from_settings(settings),
        MinecraftProbe(timeout=settings.probe_timeout),
        ActivityStore.from_settings(settings),
        WebhookClient(settings.application_id),
    )


def create_app(settings=None, dispatcher=None) -> FastAPI:
    """Build the app. Both arguments default to the environment-driven setup."""
    if settings is None:
        settings = Settings.from_env()
        configure(settings.log_level)
    if dispatcher is None:
        dispatcher = build_dispatcher(settings)

    app = FastAPI(title="gamesleep interactions", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post("/")
    async def interactions(request: Request, background: BackgroundTasks):
        raw = await request.body()
        # Starlette header keys are already lower-case.
        headers = dict(request.headers)
        try:
            status, body, job = process_request(raw, headers, dispatcher, settings.public_key)
        except Exception:
            log.exception("unhandled error in interactions handler")
            return JSONResponse({"error": "internal error"}, status_code=500)

        if job is not None:
            background.add_task(dispatcher.run_job, job)
        return JSONResponse(body, status_code=status)

    return app


def serve(host="127.0.0.1", port=8080, settings=None):
    settings = settings or Settings.from_env()
    configure(settings.log_level)
    app = create_app(settings)
    log_event(log, "devserver_listening", host=host, port=port)
    # log_config=None keeps the JSON-line root handler set up by configure().
    uvicorn.run(app, host=host, port=port, log_config=None)
    log_event(log, "devserver_stopped")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve the interactions endpoint locally.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args(argv)
    serve(args.host, args.port)


if __name__ == "__main__":
    main()
