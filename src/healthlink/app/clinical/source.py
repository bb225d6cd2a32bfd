"""Clinical data source: patient demographics and documents.

Patients come from the session's FHIR server (``{fhir_base_url}/Patient/{id}``);
documents come from the EHR documents API::

    GET {documents_base_url}/documents?patientPracticeGuid={patient_id}
    GET {documents_base_url}/documents/{document_id}
    GET {documents_base_url}/documents/{document_id}/content

Every call carries the session's bearer token. Failures surface as
``ClinicalDataError``; the issuer turns them into ``CollaboratorError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .session import ClinicalSession

DEFAULT_MEDIA_TYPE = 'application/octet-stream'


class ClinicalDataError(Exception):
    """An EHR call failed. ``status_code`` is the upstream status, if any."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    id: str
    name: str
    category: str | None
    date: str | None
    media_type: str
    size: int

    @classmethod
    def from_api(cls, doc: dict[str, Any]) -> DocumentMetadata:
        content_meta = doc.get('documentContentMetadata') or {}
        return cls(
            id=str(doc['documentGuid']),
            name=doc.get('documentName') or 'Untitled Document',
            category=doc.get('documentType'),
            date=doc.get('documentDateTime'),
            media_type=content_meta.get('mediaType') or DEFAULT_MEDIA_TYPE,
            size=int(content_meta.get('size') or 0),
        )


class ClinicalDataSource(Protocol):
    async def get_patient(self, session: ClinicalSession) -> dict[str, Any]: ...

    async def list_documents(self, session: ClinicalSession) -> list[DocumentMetadata]: ...

    async def get_document_metadata(
        self, session: ClinicalSession, document_id: str,
    ) -> DocumentMetadata: ...

    async def get_document_content(
        self, session: ClinicalSession, document_id: str,
    ) -> tuple[bytes, str]:
        """Document bytes and their media type."""
        ...


# ── Patient helpers ───────────────────────────────────────────────────


def _telecom(patient: dict[str, Any], system: str, uses: tuple[str, ...] = ()) -> str | None:
    for entry in patient.get('telecom') or []:
        if entry.get('system') != system:
            continue
        if uses and entry.get('use') not in uses:
            continue
        return entry.get('value')
    return None


def patient_phone(patient: dict[str, Any]) -> str | None:
    return _telecom(patient, 'phone', ('mobile', 'home'))


def patient_email(patient: dict[str, Any]) -> str | None:
    return _telecom(patient, 'email')


# ── HTTP implementation ───────────────────────────────────────────────


class HttpClinicalDataSource:
    """FHIR + documents API client over a shared httpx ``AsyncClient``."""

    def __init__(
        self,
        documents_base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._documents_base_url = documents_base_url.rstrip('/')
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._timeout = timeout_seconds

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, url: str, token: str, *, accept: str | None, **kwargs) -> httpx.Response:
        headers = {'Authorization': f'Bearer {token}'}
        if accept:
            headers['Accept'] = accept
        try:
            resp = await self._client.get(
                url, headers=headers, timeout=self._timeout, **kwargs,
            )
        except httpx.HTTPError as exc:
            raise ClinicalDataError(f'request failed: {type(exc).__name__}') from exc
        if resp.status_code >= 400:
            raise ClinicalDataError(
                _error_message(resp), status_code=resp.status_code,
            )
        return resp

    async def get_patient(self, session: ClinicalSession) -> dict[str, Any]:
        resp = await self._get(
            f'{session.fhir_base_url.rstrip("/")}/Patient/{session.patient_id}',
            session.access_token,
            accept='application/fhir+json',
        )
        patient = _json(resp)
        if not isinstance(patient, dict):
            raise ClinicalDataError('malformed patient resource')
        return patient

    async def list_documents(self, session: ClinicalSession) -> list[DocumentMetadata]:
        resp = await self._get(
            f'{self._documents_base_url}/documents',
            session.access_token,
            accept='application/json',
            params={'patientPracticeGuid': session.patient_id},
        )
        body = _json(resp)
        try:
            return [DocumentMetadata.from_api(d) for d in body.get('documents') or []]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ClinicalDataError('malformed document list') from exc

    async def get_document_metadata(
        self, session: ClinicalSession, document_id: str,
    ) -> DocumentMetadata:
        resp = await self._get(
            f'{self._documents_base_url}/documents/{document_id}',
            session.access_token,
            accept='application/json',
        )
        try:
            return DocumentMetadata.from_api(_json(resp))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ClinicalDataError('malformed document metadata') from exc

    async def get_document_content(
        self, session: ClinicalSession, document_id: str,
    ) -> tuple[bytes, str]:
        resp = await self._get(
            f'{self._documents_base_url}/documents/{document_id}/content',
            session.access_token,
            accept=None,
        )
        return resp.content, resp.headers.get('content-type', DEFAULT_MEDIA_TYPE)


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ClinicalDataError(
            f'upstream returned non-JSON body ({resp.status_code})',
        ) from exc


def _error_message(resp: httpx.Response) -> str:
    # FHIR servers report failures as an OperationOutcome.
    try:
        body = resp.json()
    except ValueError:
        return f'upstream returned {resp.status_code}'
    if isinstance(body, dict) and body.get('resourceType') == 'OperationOutcome':
        issues = body.get('issue') or []
        text = ', '.join(i.get('diagnostics') or i.get('code', '') for i in issues)
        if text:
            return text
    return f'upstream returned {resp.status_code}'


# ── In-memory implementation ──────────────────────────────────────────


class InMemoryClinicalDataSource:
    """Fixture-backed data source for local development and tests.

    ``fail_content_for`` lists document ids whose content fetch fails.
    """

    def __init__(
        self,
        patients: dict[str, dict[str, Any]] | None = None,
        documents: dict[str, list[tuple[DocumentMetadata, bytes]]] | None = None,
        *,
        fail_content_for: set[str] | None = None,
    ) -> None:
        self.patients = patients or {}
        self.documents = documents or {}
        self.fail_content_for = fail_content_for or set()

    def add_patient(self, patient: dict[str, Any]) -> None:
        self.patients[patient['id']] = patient

    def add_document(self, patient_id: str, meta: DocumentMetadata, content: bytes) -> None:
        self.documents.setdefault(patient_id, []).append((meta, content))

    def _find(self, session: ClinicalSession, document_id: str) -> tuple[DocumentMetadata, bytes]:
        for meta, content in self.documents.get(session.patient_id, []):
            if meta.id == document_id:
                return meta, content
        raise ClinicalDataError(f'document {document_id} not found', status_code=404)

    async def get_patient(self, session: ClinicalSession) -> dict[str, Any]:
        patient = self.patients.get(session.patient_id)
        if patient is None:
            raise ClinicalDataError('patient not found', status_code=404)
        return patient

    async def list_documents(self, session: ClinicalSession) -> list[DocumentMetadata]:
        return [meta for meta, _ in self.documents.get(session.patient_id, [])]

    async def get_document_metadata(
        self, session: ClinicalSession, document_id: str,
    ) -> DocumentMetadata:
        return self._find(session, document_id)[0]

    async def get_document_content(
        self, session: ClinicalSession, document_id: str,
    ) -> tuple[bytes, str]:
        if document_id in self.fail_content_for:
            raise ClinicalDataError('simulated content outage', status_code=503)
        meta, content = self._find(session, document_id)
        return content, meta.media_type
