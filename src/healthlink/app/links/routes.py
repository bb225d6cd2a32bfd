"""Link issuance and management API endpoints.

  POST /api/shl                 → issue a link
  GET  /api/shls                → list links for the session patient
  GET  /api/shls/{link_id}      → link details + access log
  POST /api/shls/{link_id}/revoke → revoke a link

Auth contract:
  - Every endpoint requires a clinical session (signed session cookie).
  - Links are scoped to the session patient; others are reported as 404.

Key handling:
  - The viewer URL and ``shlink`` (which carry the key) are returned exactly
    once, in the issuance response. They are not retrievable afterwards.

This module provides:
  ``create_links_router`` -- FastAPI router factory with injected deps.
  ``error_response`` -- ``HealthLinkError`` to ``JSONResponse``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..clinical.session import ClinicalSession, get_clinical_session
from ..errors import HealthLinkError
from .issuer import IssueRequest, LinkIssuer
from .management import LinkManager


def error_response(exc: HealthLinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


# ── Request schemas ──────────────────────────────────────────────────


class CreateLinkRequest(BaseModel):
    """Request body for link issuance."""

    model_config = ConfigDict(populate_by_name=True)

    document_ids: list[str] = Field(
        default_factory=list, alias='documentIds', description='Documents to share',
    )
    phone: str | None = Field(default=None, description='Patient phone for SMS delivery')
    email: str | None = Field(default=None, description='Patient email for delivery')
    expiration_days: int | None = Field(
        default=None, alias='expirationDays', description='Retention window in days',
    )


# ── Route factory ────────────────────────────────────────────────────


def create_links_router(issuer: LinkIssuer, manager: LinkManager) -> APIRouter:
    """Create the link management router.

    Args:
        issuer: Write path for new links.
        manager: Listing, details and revocation.

    Returns:
        FastAPI router with link lifecycle routes.
    """
    router = APIRouter(tags=['health-links'])

    @router.post('/api/shl', status_code=201)
    async def create_link(
        body: CreateLinkRequest,
        session: ClinicalSession = Depends(get_clinical_session),
    ):
        """Issue a link for the selected documents and notify the patient."""
        try:
            issued = await issuer.issue(session, IssueRequest(
                document_ids=body.document_ids,
                phone=body.phone,
                email=body.email,
                expiration_days=body.expiration_days,
            ))
        except HealthLinkError as exc:
            return error_response(exc)

        return {
            'id': issued.id,
            'viewerUrl': issued.viewer_url,
            'shlink': issued.shlink,
            'expiresAt': issued.expires_at.isoformat(),
            'documentCount': issued.document_count,
            'deliveryStatus': issued.delivery.to_dict(),
        }

    @router.get('/api/shls')
    async def list_links(session: ClinicalSession = Depends(get_clinical_session)):
        """List links for the session patient, newest first."""
        try:
            links = await manager.list_links(session)
        except HealthLinkError as exc:
            return error_response(exc)
        return {'shls': links}

    @router.get('/api/shls/{link_id}')
    async def get_link(
        link_id: str,
        session: ClinicalSession = Depends(get_clinical_session),
    ):
        try:
            return await manager.details(link_id, session)
        except HealthLinkError as exc:
            return error_response(exc)

    @router.post('/api/shls/{link_id}/revoke')
    async def revoke_link(
        link_id: str,
        session: ClinicalSession = Depends(get_clinical_session),
    ):
        """Revoke a link. Revoking twice is a 400."""
        try:
            await manager.revoke(link_id, session)
        except HealthLinkError as exc:
            return error_response(exc)
        return {'success': True, 'message': 'Health link revoked'}

    return router
