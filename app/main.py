import logging

from fastapi import FastAPI

from app.core.config import settings
from app.routers import health, insights

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
)


# Root endpoint
@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


# Register routers
app.include_router(health.router, prefix=f"{settings.API_PREFIX}", tags=["Health"])  # /api/health
app.include_router(insights.router, prefix=f"{settings.API_PREFIX}/insights", tags=["Insights"])

logger.info(f"{settings.PROJECT_NAME} routes registered under {settings.API_PREFIX}")
