import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from allegro_connector.config import settings
from allegro_connector.dependencies import get_sync_service
from allegro_connector.routers import allegro_oauth, offers
from allegro_connector.utils.logger import logger

app = FastAPI(title="Allegro Connector API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


app.include_router(offers.router)
app.include_router(allegro_oauth.router)


@app.on_event("shutdown")
async def drain_background_sync():
    # Let in-flight Allegro writes record their final sync status.
    sync = get_sync_service()
    if sync.propagator.pending:
        logger.info(f"Waiting for {sync.propagator.pending} background sync task(s)")
        await sync.propagator.drain()


@app.get("/")
async def root():
    return {"message": "Allegro Connector API", "version": "1.0.0", "environment": settings.ALLEGRO_ENVIRONMENT}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
