import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from config import LOG_FORMAT, Settings, load_settings
from errors import InputError
from models import ExtractionResponse, ExtractRequest
from orchestrator import ExtractionOrchestrator
from storage import ObjectStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None,
               orchestrator: Optional[ExtractionOrchestrator] = None) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        settings: Configuration, loaded from the environment when omitted
        orchestrator: Orchestrator to serve, built from settings when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings or load_settings()
        app.state.orchestrator = orchestrator or ExtractionOrchestrator(
            app.state.settings, ObjectStore.from_settings(app.state.settings)
        )
        logger.info("deepgram: configured=%s", app.state.settings.transcript_enabled)
        logger.info("gemini:   configured=%s", app.state.settings.visual_enabled)
        yield

    app = FastAPI(
        title="Ad Extraction Pipeline",
        description="Transcript and keyframe description extraction for stored ads",
        lifespan=lifespan,
    )

    # --- CORS configuration for frontend access ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health(request: Request):
        """
        Report liveness and which extraction streams have credentials.

        **Response Example:**
        {
            "status": "ok",
            "streams": {"transcript": true, "visual": false}
        }
        """
        current = request.app.state.settings
        return {
            "status": "ok",
            "streams": {
                "transcript": current.transcript_enabled,
                "visual": current.visual_enabled,
            },
        }

    @app.post("/extract", response_model=ExtractionResponse, response_model_exclude_none=True)
    def extract(body: ExtractRequest, request: Request):
        """
        Run transcript and visual-description extraction for one ad.

        **Request Body Example:**
        {
            "ad_id": "ad-123"
        }

        **Response Example:**
        {
            "ad_id": "ad-123",
            "outcomes": [
                {"stream_name": "transcript", "status": "success", "result_count": 12,
                 "storage_key": "ads/ad-123/extraction/asr_results.json"},
                {"stream_name": "visual", "status": "skipped", "result_count": 0,
                 "error_message": "no keyframe images available"}
            ],
            "processing_time_ms": 8412.0
        }

        Stream failures are reported inside `outcomes`; the request itself only
        fails when the ad's video cannot be read.
        """
        if not body.ad_id.strip():
            raise HTTPException(status_code=400, detail="ad_id is required")

        try:
            return request.app.state.orchestrator.extract(body.ad_id)
        except InputError as e:
            logger.error("Extraction for %s aborted: %s", body.ad_id, e)
            raise HTTPException(status_code=500, detail=str(e)) from e

    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
