from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from api.src.config import get_settings
from api.src.db.database import init_db
from api.src.routes import health_router, pipelines_router, webhooks_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting DeployLine API")
    await init_db()
    yield
    logger.info("Shutting down DeployLine API")

app = FastAPI(
    title="DeployLine",
    description="Deployment pipeline orchestrator: gate, build, publish and roll out container images",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(pipelines_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "DeployLine",
        "version": "0.1.0",
        "docs": "/docs"
    }
