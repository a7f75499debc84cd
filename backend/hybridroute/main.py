import logging
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that read env vars

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hybridroute import config

logger = logging.getLogger("hybridroute")
logging.basicConfig(level=logging.INFO)

# Global state populated during startup
app_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared HTTP client, providers and session manager."""
    from hybridroute.directions_gateway import GoogleDirectionsClient
    from hybridroute.elevation import GoogleElevationClient
    from hybridroute.session import PlannerSessionManager

    api_key = config.get_api_key()
    if not api_key or api_key == config.PLACEHOLDER_API_KEY:
        logger.warning(
            "GOOGLE_MAPS_API_KEY is missing or placeholder in backend/.env. "
            "Directions and elevation queries will fail until a key is set; "
            "copy backend/.env.example to backend/.env and add it."
        )

    # Shared httpx client for connection pooling across all provider calls
    http_client = httpx.AsyncClient(
        timeout=config.get_directions_timeout_sec(),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
    )
    app_state["http_client"] = http_client
    logger.info("Shared HTTP client created (connection pooling enabled)")

    directions = GoogleDirectionsClient(http_client=http_client, api_key=api_key)
    elevation = GoogleElevationClient(http_client=http_client, api_key=api_key)
    app_state["directions_provider"] = directions
    app_state["elevation_provider"] = elevation
    app_state["sessions"] = PlannerSessionManager(directions, elevation)
    logger.info(f"Planner ready (directions: {directions.base_url})")

    yield

    logger.info("Shutting down...")
    for session_id in list(app_state["sessions"].sessions):
        app_state["sessions"].end_session(session_id)
    await http_client.aclose()
    logger.info("Shared HTTP client closed")


app = FastAPI(title="HybridRoute API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from hybridroute.routes import router  # noqa: E402

app.include_router(router, prefix="/api")
