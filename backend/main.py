"""
App setup, middleware, lifespan
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from core.config import settings
from core.startup import initialize_optimizer_system, cleanup_optimizer_system
from api.routes import root, evaluation, experiments, budget, optimization

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    await initialize_optimizer_system(app)
    logger.info("RAG optimizer started")
    try:
        yield
    finally:
        # shutdown
        await cleanup_optimizer_system(app)


app = FastAPI(title="RAG Optimizer API", lifespan=lifespan)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods
    allow_headers=["*"],  # Allows all headers
)

# Include routes
app.include_router(root.router)
app.include_router(evaluation.router)
app.include_router(experiments.router)
app.include_router(budget.router)
app.include_router(optimization.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
