"""HTTP surface: POST /fusion-run and GET /health."""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Literal

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.config_loader import AppConfig, load_config
from fusion.background import BackgroundQueue
from fusion.errors import UnauthenticatedSaveError
from fusion.models import FusionRequest, HistoryMessage
from fusion.service import FusionService, create_service, parse_bearer

logger = logging.getLogger(__name__)


class HistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class FusionRunBody(BaseModel):
    prompt: str = Field(..., min_length=1)
    model_slugs: list[str] = Field(default_factory=list)
    master_model_slug: str | None = None
    fusion_mode: Literal["solo", "fusion", "supernova", "image", "manus"] = "fusion"
    conversation_id: str | None = None
    project_id: str | None = None
    history: list[HistoryItem] = Field(default_factory=list)
    web_verify: bool = False
    skip_save: bool = False
    image_count: int = 1
    force_json: bool = False

    def to_request(self) -> FusionRequest:
        return FusionRequest(
            prompt=self.prompt,
            model_slugs=list(self.model_slugs),
            master_model_slug=self.master_model_slug,
            fusion_mode=self.fusion_mode,
            conversation_id=self.conversation_id,
            project_id=self.project_id,
            history=[HistoryMessage(role=h.role, content=h.content) for h in self.history],
            web_verify=self.web_verify,
            skip_save=self.skip_save,
            image_count=self.image_count,
            force_json=self.force_json,
        )


def create_app(config: AppConfig | None = None, service: FusionService | None = None) -> FastAPI:
    """Build the app. A prebuilt service skips config loading and client setup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http: httpx.AsyncClient | None = None
        svc = service
        if svc is None:
            app_config = config or load_config()
            http = httpx.AsyncClient(timeout=app_config.services.timeout_sec)
            svc = create_service(app_config, http, background=BackgroundQueue())
        if svc.background is not None:
            svc.background.start()
        app.state.service = svc
        logger.info("Fusion server ready")
        yield
        if svc.background is not None:
            await svc.background.stop()
        if http is not None:
            await http.aclose()
        logger.info("Fusion server stopped")

    app = FastAPI(title="Fusion Council", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())},
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/fusion-run")
    async def fusion_run(
        body: FusionRunBody,
        request: Request,
        authorization: str | None = Header(default=None),
    ):
        svc: FusionService = request.app.state.service
        try:
            return await svc.handle(body.to_request(), parse_bearer(authorization))
        except UnauthenticatedSaveError as exc:
            logger.warning("Rejected save: %s", exc)
            return JSONResponse(status_code=401, content={"error": str(exc)})
        except Exception as exc:
            logger.exception("Fusion run failed")
            return JSONResponse(
                status_code=500,
                content={
                    "error": str(exc) or exc.__class__.__name__,
                    "stack": traceback.format_exc(),
                    "context": "fusion-run",
                },
            )

    return app
