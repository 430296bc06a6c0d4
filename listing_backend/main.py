import secrets
import uvicorn

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from starlette.middleware.sessions import SessionMiddleware

from listing_backend.config import get_logger, instrument_app, settings
from listing_backend.router import admin_router, lifecycle_router

logger = get_logger("main")

# Service configuration
SERVICE_TITLE = "Listing Lifecycle API"
SERVICE_PATH = "lifecycle"
API_VERSION = "v1"

# Main application instance
app = FastAPI(title=f"{SERVICE_TITLE} - Main Gateway")

@app.on_event("startup")
async def log_lifecycle_configuration():
    logger.info(
        f"Listing durations: {settings.tier_durations} hours, archive retention: "
        f"{settings.archive_duration_days} days, inactive timeout: {settings.inactive_archive_days} days"
    )
    if not settings.cron_secret and not settings.admin_secret:
        logger.warning("Neither CRON_SECRET nor ADMIN_SECRET is set; admin endpoints will reject every request")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Adjust for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

instrument_app(app)

@app.get("/", response_class=HTMLResponse)
@app.get(f"/{SERVICE_PATH}", response_class=HTMLResponse)
@app.get(f"/{SERVICE_PATH}/", response_class=HTMLResponse)
async def hello_service():
    logger.info(f"Root or service path /{SERVICE_PATH} accessed.")
    return f"""
    <html>
        <head>
            <title>{SERVICE_TITLE}</title>
        </head>
        <body>
            <h1>You've reached the {SERVICE_TITLE}.</h1>
            <p>See <a href='/{SERVICE_PATH}/api/{API_VERSION}/docs'>API docs</a> for listing lifecycle operations.</p>
        </body>
    </html>
    """

# Sub-API for the lifecycle operations
api_v1 = FastAPI(
    title=SERVICE_TITLE,
    description="API for archiving, restoring and expiring marketplace listings.",
    version=API_VERSION,
)

SECRET_KEY = secrets.token_urlsafe(32)
api_v1.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)
logger.info(f"SessionMiddleware added to /api/{API_VERSION} with a generated SECRET_KEY.")

api_v1.include_router(lifecycle_router.router)
logger.info("Lifecycle router included in the sub-API.")

api_v1.include_router(admin_router.router)
logger.info("Admin router included in the sub-API.")

app.mount(f"/{SERVICE_PATH}/api/{API_VERSION}", api_v1)
logger.info(f"Sub-API mounted at /{SERVICE_PATH}/api/{API_VERSION}")

if __name__ == "__main__":
    port = 8084
    host = "0.0.0.0"

    logger.info(f"Starting Uvicorn server on {host}:{port}")
    uvicorn.run("listing_backend.main:app", host=host, port=port, log_level="info", reload=True)
