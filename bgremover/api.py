"""
FastAPI layer over a background-removal session.

Endpoints:
 - GET /health
 - GET /              (redirects mobile Safari, otherwise session state)
 - GET /session, GET /models
 - POST /model, POST /recover
 - POST /images, POST /samples/{index}
 - GET /images, GET /images/{id}/processed
 - DELETE /images/{id}
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Callable, List, Optional

from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from . import config
from .device import is_mobile_safari
from .errors import ModelStateError, SessionBlockedError
from .session import BackgroundRemovalSession
from .torch_engine import TorchInferenceEngine

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


class SwitchModelRequest(BaseModel):
    modelId: str


class JobResponse(BaseModel):
    id: int
    filename: str
    status: str
    hasProcessedFile: bool


def _default_session() -> BackgroundRemovalSession:
    return BackgroundRemovalSession(TorchInferenceEngine(settings), settings=settings)


def _blocked(session: BackgroundRemovalSession, exc: Exception) -> HTTPException:
    detail = session.error.as_dict() if session.error else {"message": str(exc)}
    return HTTPException(status_code=503, detail=detail)


def create_app(session_factory: Optional[Callable[[], BackgroundRemovalSession]] = None) -> FastAPI:
    factory = session_factory or _default_session

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session = factory()
        app.state.session = session
        await session.start()
        try:
            yield
        finally:
            await session.close()

    app = FastAPI(title="Local Background Removal Service", version="0.2.0", lifespan=lifespan)

    def get_session(request: Request) -> BackgroundRemovalSession:
        return request.app.state.session

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/")
    def index(request: Request):
        session = get_session(request)
        if session.redirect_url or is_mobile_safari(request.headers.get("user-agent")):
            return RedirectResponse(session.settings.redirect_url)
        return session.snapshot()

    @app.get("/session")
    def session_state(request: Request):
        return get_session(request).snapshot()

    @app.get("/models")
    def models(request: Request):
        return get_session(request).snapshot()["selectableModels"]

    @app.post("/model")
    async def switch_model(body: SwitchModelRequest, request: Request):
        session = get_session(request)
        try:
            switched = await session.switch_model(body.modelId)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
        except ModelStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except SessionBlockedError as exc:
            raise _blocked(session, exc) from exc
        if session.error is not None:
            raise HTTPException(status_code=503, detail=session.error.as_dict())
        return {"switched": switched, **session.snapshot()}

    @app.post("/recover")
    async def recover(request: Request):
        session = get_session(request)
        try:
            recovered = await session.recover()
        except ModelStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except SessionBlockedError as exc:
            raise _blocked(session, exc) from exc
        if not recovered:
            raise HTTPException(status_code=503, detail=session.error.as_dict())
        return session.snapshot()

    @app.post("/images", response_model=List[JobResponse])
    async def upload_images(request: Request, files: List[UploadFile] = File(...)):
        session = get_session(request)
        payloads = []
        for upload in files:
            payloads.append((upload.filename or "image", await upload.read()))
        try:
            jobs = session.submit(payloads)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
        except SessionBlockedError as exc:
            raise _blocked(session, exc) from exc
        return [job.as_dict() for job in jobs]

    @app.post("/samples/{index}", response_model=JobResponse)
    async def load_sample(index: int, request: Request):
        session = get_session(request)
        try:
            job = await session.load_sample(index)
        except IndexError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except SessionBlockedError as exc:
            raise _blocked(session, exc) from exc
        if job is None:
            raise HTTPException(status_code=502, detail="Could not download sample image")
        return job.as_dict()

    @app.get("/images", response_model=List[JobResponse])
    def list_images(request: Request):
        return [job.as_dict() for job in get_session(request).jobs()]

    @app.get("/images/{job_id}/processed")
    def processed_image(job_id: int, request: Request):
        job = get_session(request).get_job(job_id)
        if job is None or job.processed_file is None:
            raise HTTPException(status_code=404, detail="No processed image")
        return Response(content=job.processed_file, media_type="image/png")

    @app.delete("/images/{job_id}", status_code=204)
    def delete_image(job_id: int, request: Request):
        get_session(request).delete_job(job_id)
        return Response(status_code=204)

    return app


app = create_app()
