"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasktrack.config import settings
from tasktrack.database import engine, Base
from tasktrack.logging_config import configure_logging
from tasktrack.api.routes import router
# Import models to register them with SQLAlchemy Base
from tasktrack.models.domain import Center, User, Task, Verification, Comment  # noqa: F401
from tasktrack.models.audit import ActivityLog  # noqa: F401

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="tasktrack",
    description="Role-based task assignment with delegated, star-rated verification.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["tasks"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "tasktrack"}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting tasktrack on port 8000")
    uvicorn.run(app, host="0.0.0.0", port=8000)
