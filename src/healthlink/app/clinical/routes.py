"""Clinical session endpoints.

  GET  /api/session        → patient summary, shareable documents, provider
  GET  /api/session/check  → session validity check
  POST /api/session/logout → drop the session and clear the cookie
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...observability import get_logger
from ..links.bundle import patient_display_name
from .session import ClinicalSession, ClinicalSessionStore, get_clinical_session
from .source import ClinicalDataError, ClinicalDataSource, DocumentMetadata, patient_email, patient_phone

logger = get_logger(__name__)

_DOCUMENT_TYPE_LABELS = {
    'lab_result': 'Lab Result',
    'clinical_note': 'Clinical Note',
    'imaging_report': 'Imaging Report',
    'prescription': 'Prescription',
    'referral': 'Referral',
    'discharge_summary': 'Discharge Summary',
    'consent_form': 'Consent Form',
    'insurance_document': 'Insurance Document',
}


def document_type_label(document_type: str | None) -> str:
    if not document_type:
        return 'Document'
    normalized = '_'.join(document_type.lower().split())
    return _DOCUMENT_TYPE_LABELS.get(normalized, document_type)


def format_file_size(size: int | None) -> str:
    if not size:
        return 'Unknown size'
    value = float(size)
    for unit in ('B', 'KB', 'MB'):
        if value < 1024:
            return f'{value:.1f} {unit}'
        value /= 1024
    return f'{value:.1f} GB'


def _document_summary(doc: DocumentMetadata) -> dict:
    return {
        'id': doc.id,
        'name': doc.name,
        'type': document_type_label(doc.category),
        'date': doc.date,
        'size': format_file_size(doc.size),
        'contentType': doc.media_type,
    }


def create_session_router(
    source: ClinicalDataSource,
    store: ClinicalSessionStore,
    *,
    cookie_name: str,
    timeout_seconds: float = 15.0,
) -> APIRouter:
    router = APIRouter(tags=['session'])

    @router.get('/api/session')
    async def get_session(session: ClinicalSession = Depends(get_clinical_session)):
        """Current patient and the documents that can be shared."""
        try:
            patient, documents = await asyncio.wait_for(
                asyncio.gather(source.get_patient(session), source.list_documents(session)),
                timeout=timeout_seconds,
            )
        except (ClinicalDataError, asyncio.TimeoutError) as exc:
            status = getattr(exc, 'status_code', None)
            logger.warning('session_load_failed', error=type(exc).__name__, status=status)
            if status == 401:
                await store.delete(session.session_id)
                response = JSONResponse(
                    status_code=401,
                    content={
                        'error': 'Session expired',
                        'message': 'Your session has expired. Please log in again.',
                    },
                )
                response.delete_cookie(cookie_name, path='/')
                return response
            return JSONResponse(
                status_code=502,
                content={'error': 'Failed to load session', 'code': 'collaborator_unavailable'},
            )

        return {
            'patient': {
                'id': session.patient_id,
                'name': patient_display_name(patient),
                'birthDate': patient.get('birthDate'),
                'gender': patient.get('gender'),
                'phone': patient_phone(patient),
                'email': patient_email(patient),
            },
            'documents': [_document_summary(d) for d in documents],
            'provider': {'id': session.provider_id, 'name': session.provider_name},
        }

    @router.get('/api/session/check')
    async def check_session(session: ClinicalSession = Depends(get_clinical_session)):
        return {'authenticated': True, 'patientId': session.patient_id}

    @router.post('/api/session/logout')
    async def logout(session: ClinicalSession = Depends(get_clinical_session)):
        await store.delete(session.session_id)
        response = JSONResponse(content={'success': True})
        response.delete_cookie(cookie_name, path='/')
        return response

    return router
