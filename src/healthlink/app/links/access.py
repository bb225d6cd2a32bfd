"""Public manifest endpoint.

  POST /shl/{link_id}/manifest → manifest with a fresh bundle URL

No authentication: the 256-bit link id is the capability, and the bundle
it points at is useless without the key in the link fragment.

Error responses:
  - 404: Link id malformed or unknown (identical bodies).
  - 410: Link revoked or expired (``reason`` says which).
  - 502: Registry or storage unavailable.

This module provides:
  ``create_manifest_router`` -- FastAPI router factory.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from ..errors import HealthLinkError
from ..notifications.geo import client_ip
from .manifest import ManifestService, RequestContext
from .routes import error_response


# ── Request schemas ──────────────────────────────────────────────────


class ManifestRequest(BaseModel):
    """Request body for a manifest fetch."""

    model_config = ConfigDict(populate_by_name=True)

    recipient: str = Field(default='', max_length=256, description='Who is viewing')
    embedded_length_max: int | None = Field(
        default=None, alias='embeddedLengthMax', description='Accepted and ignored',
    )


# ── Route factory ────────────────────────────────────────────────────


def create_manifest_router(service: ManifestService) -> APIRouter:
    router = APIRouter(tags=['manifest'])

    @router.post('/shl/{link_id}/manifest')
    async def get_manifest(link_id: str, body: ManifestRequest, request: Request):
        context = RequestContext(
            client_ip=client_ip(
                request.headers, request.client.host if request.client else None,
            ),
            user_agent=request.headers.get('user-agent'),
            recipient=body.recipient,
        )
        try:
            return await service.serve(link_id, context)
        except HealthLinkError as exc:
            return error_response(exc)

    return router
