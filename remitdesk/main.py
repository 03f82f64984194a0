import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from remitdesk.api.admin_routes import router as admin_router
from remitdesk.api.routes import router
from remitdesk.core.orchestrator import get_services
from remitdesk.observability.logging import log
from remitdesk.settings import settings


async def _sweep_verifications(interval_sec: int) -> None:
    # Reads already treat expired sessions as absent; this only frees memory
    while True:
        await asyncio.sleep(interval_sec)
        get_services().sessions.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    svc = get_services()
    log(event="boot", orderStore=settings.ORDER_STORE, statusSource=type(svc.status_source).__name__,
        delayThresholdMinutes=svc.policy.threshold_minutes, notifyMode=settings.NOTIFY_MODE)
    task = None
    if settings.VERIFICATION_SWEEP_SEC > 0:
        task = asyncio.create_task(_sweep_verifications(settings.VERIFICATION_SWEEP_SEC))
    yield
    if task is not None:
        task.cancel()


app = FastAPI(title="Remitdesk API", lifespan=lifespan)

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {
        "status": "ok",
        "message": "Remitdesk API is running. POST tool calls to /mcp/messages; providers post to /callback/{channel}.",
    }


@app.get("/health")
def health():
    return {"status": "ok"}
