"""ScriptForge API - multi-agent story analysis workflows.

Users author workflows of analysis agents over a story brief and
manuscript, run them, and poll per-node progress and results.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.agents.registry import get_agent_registry
from src.api.routes import agents, videos, workflows
from src.executor.db import DATABASE_URL, init_db
from src.executor.run_manager import recover_orphaned_runs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Initializing database...")
    init_db()

    logger.info("Loading agent definitions...")
    agent_registry = get_agent_registry()
    logger.info(f"Loaded {agent_registry.count()} agents")

    # Runs whose process died mid-flight still hold their lock
    recovered = recover_orphaned_runs()
    if recovered:
        logger.info(f"Recovered {recovered} orphaned workflow runs")

    logger.info("ScriptForge API ready")
    yield
    logger.info("Shutting down ScriptForge API")


app = FastAPI(
    title="ScriptForge API",
    description="""
## Multi-agent story analysis

Author a workflow of analysis agents, run it against a story brief and
manuscript, and poll progress while it runs.

### Key Endpoints

- `GET /v1/agents` - List analysis agents
- `POST /v1/workflows` - Create a workflow
- `POST /v1/workflows/execute` - Run a workflow or a single node
- `GET /v1/workflows/{workflow_id}/progress` - Poll run progress
- `GET /v1/generated-videos?workflowId=...` - Videos rendered from agent prompts
""",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(agents.router, prefix="/v1")
app.include_router(workflows.router, prefix="/v1")
app.include_router(videos.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "ScriptForge API",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "agents": "/v1/agents",
            "workflows": "/v1/workflows",
            "execute": "/v1/workflows/execute",
            "generated_videos": "/v1/generated-videos",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "agents_loaded": get_agent_registry().count(),
        "database": "postgres" if DATABASE_URL else "sqlite",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True,
    )
