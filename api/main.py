from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analysis import router as analysis_router
from core import db, logging_config, settings
from ingestion import router as ingestion_router
from records import repository as records_repository
from records import router as records_router

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging_config.configure_logging()
    # Initialize the DB pool once per process.
    await db.init_pool()
    try:
        yield
    finally:
        await db.close_pool()


app = FastAPI(lifespan=lifespan)

# Allow the browser front end to call this API.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.env_list("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingestion_router.router, tags=["ingestion"])
app.include_router(analysis_router.router, tags=["analysis"])
app.include_router(records_router.router, tags=["records"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/stats")
async def health_stats() -> dict:
    """
    Quick uptime check: if `last_analyzed_at` stops moving, something is stuck.
    """
    stats = await records_repository.record_stats()
    return {
        "status": "ok",
        "total_records": stats["total"],
        "analyzed_records": stats["analyzed_count"],
        "last_analyzed_at": stats["last_analyzed_at"],
    }


@app.get("/")
def root() -> dict:
    return {"message": "ingest-analyze api"}
