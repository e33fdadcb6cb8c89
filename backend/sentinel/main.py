import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sentinel.config import load_settings
from sentinel.routers import uplinks

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # create the extension settings table when asked to (no alembic run)
    if settings.settings_store == "sql" and settings.create_tables:
        from sentinel.db import create_tables

        await create_tables()
        logger.info("Extension settings table is ready")
    yield


app = FastAPI(title="Sentinel uplink decoder", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(uplinks.router)


@app.get("/health")
def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sentinel.main:app", host="0.0.0.0", port=8000, reload=True)
