import time

from fastapi import FastAPI, Request

from .logging_utils import get_logger

logger = get_logger("instrumentation")


def instrument_app(app: FastAPI) -> None:
    """
    Log method, path, status code and latency for every request handled by the app.
    """
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    logger.info(f"Request logging enabled for '{app.title}'")
