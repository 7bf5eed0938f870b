import os
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from api.v1 import router as v1_router
from api.v1.state import set_runtime
from domain.ttl.policy import TTLControllerConfig
from lifecycle.runtime import ControllerRuntime, build_runtime
from observability.logging_config import configure_logging

app = FastAPI(title="Report TTL Controller")
app.include_router(v1_router, prefix="/v1")

RUNTIME: Optional[ControllerRuntime] = None


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------

@app.on_event("startup")
def controller_startup() -> None:
    """
    Startup hook: config from env, wire store/queue/workers/watch, start them.
    A bad TTL_* value fails startup here.
    """
    global RUNTIME

    configure_logging()
    cfg = TTLControllerConfig.from_env()
    RUNTIME = build_runtime(cfg)
    set_runtime(RUNTIME)
    RUNTIME.start()


@app.on_event("shutdown")
def controller_shutdown() -> None:
    global RUNTIME

    if RUNTIME is not None:
        RUNTIME.stop()
    set_runtime(None)
    RUNTIME = None


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------

@app.get("/healthz", response_class=PlainTextResponse)
def healthz() -> PlainTextResponse:
    if RUNTIME is None:
        return PlainTextResponse("starting", status_code=503)

    stats = RUNTIME.queue.stats()
    return PlainTextResponse(
        f"ok backend={RUNTIME.config.store_backend} workers={RUNTIME.dispatcher.workers} "
        f"ready={stats['ready']} waiting={stats['waiting']} processing={stats['processing']}",
        media_type="text/plain",
    )


def main() -> None:
    import uvicorn

    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
