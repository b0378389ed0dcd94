"""
FastAPI application for the GitOps webhook service.

VCS providers and CI jobs call the webhook routes under /hook; the project
API lives under /api.
"""

import logging

from fastapi import FastAPI

from backend.routes import router as project_router
from backend.webhook_routes import router as webhook_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="GitOps Migration Pipeline",
    description="Turns VCS pushes into migration issues and reviews SQL in pull requests",
    version="1.0.0",
)

app.include_router(webhook_router)
app.include_router(project_router)

logger.info("FastAPI app initialized")
