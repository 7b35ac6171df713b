"""Public endpoints: liveness, build version and Prometheus metrics."""

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from dsapi.config import VersionConfig

router = APIRouter(prefix="/v1/ds", tags=["Health"])


class VersionResponse(BaseModel):
    """Build information of the running service."""

    version: str
    prerelease: str
    build_stamp: str
    git_hash: str


@router.get("/ping", response_class=PlainTextResponse)
def ping() -> str:
    """Liveness check; answers ``pong``."""
    return "pong"


@router.get("/version", response_model=VersionResponse)
def get_version(request: Request) -> VersionResponse:
    """Return the configured build information.

    Args:
        request: The incoming request (used for app state access).
    """
    version: VersionConfig = getattr(request.app.state, "version", None) or VersionConfig()
    return VersionResponse(
        version=version.version,
        prerelease=version.prerelease,
        build_stamp=version.build_stamp,
        git_hash=version.git_hash,
    )


@router.get("/metrics")
def get_metrics() -> Response:
    """Prometheus text exposition of the process metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
