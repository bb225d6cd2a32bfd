"""Shared fixtures for health link unit tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from healthlink.app.clinical.session import (
    ClinicalSession,
    InMemoryClinicalSessionStore,
    issue_session_token,
)
from healthlink.app.clinical.source import DocumentMetadata, InMemoryClinicalDataSource
from healthlink.app.crypto.secrets import SecretGenerator
from healthlink.app.links.model import Link
from healthlink.app.main import create_app
from healthlink.app.settings import HealthLinkSettings
from healthlink.app.storage.artifacts import InMemoryArtifactStorage

SESSION_SECRET = 'test-session-secret-0123456789abcdef'
COOKIE_NAME = 'healthlink_session'

PDF_BYTES = b'%PDF-1.4 lab results for Jane'
NOTE_BYTES = b'Follow-up in two weeks.'


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return ClinicalSession(
        session_id='sess_1',
        patient_id='pat_1',
        provider_id='prov_1',
        provider_name='Dr. Ada Lovelace',
        fhir_base_url='https://fhir.test/r4',
        access_token='ehr-bearer-token',
    )


@pytest.fixture
def other_session():
    return ClinicalSession(
        session_id='sess_2',
        patient_id='pat_2',
        provider_id='prov_2',
        provider_name='Dr. Grace Hopper',
        fhir_base_url='https://fhir.test/r4',
        access_token='other-bearer-token',
    )


@pytest.fixture
def patient():
    return {
        'resourceType': 'Patient',
        'id': 'pat_1',
        'name': [{'given': ['Jane'], 'family': 'Doe'}],
        'birthDate': '1980-04-02',
        'gender': 'female',
        'telecom': [
            {'system': 'phone', 'value': '+15551234567', 'use': 'mobile'},
            {'system': 'email', 'value': 'jane@example.com'},
        ],
    }


@pytest.fixture
def clinical(patient):
    source = InMemoryClinicalDataSource()
    source.add_patient(patient)
    source.add_patient({'resourceType': 'Patient', 'id': 'pat_2', 'name': [{'text': 'John Roe'}]})
    source.add_document('pat_1', DocumentMetadata(
        id='doc_1', name='CBC Panel', category='Lab Result',
        date='2026-02-20T09:00:00Z', media_type='application/pdf', size=len(PDF_BYTES),
    ), PDF_BYTES)
    source.add_document('pat_1', DocumentMetadata(
        id='doc_2', name='Visit Note', category='Clinical Note',
        date='2026-02-21T10:30:00Z', media_type='text/plain', size=len(NOTE_BYTES),
    ), NOTE_BYTES)
    source.add_document('pat_2', DocumentMetadata(
        id='doc_9', name='Other', category=None, date=None,
        media_type='text/plain', size=5,
    ), b'other')
    return source


@pytest.fixture
def make_link():
    """Factory for Link records with sensible defaults."""

    def _make(**overrides) -> Link:
        link_id = overrides.pop('id', None) or SecretGenerator().new_link_id()
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        fields = dict(
            id=link_id,
            patient_id='pat_1',
            patient_name='Jane Doe',
            provider_id='prov_1',
            provider_name='Dr. Ada Lovelace',
            bundle_storage_key=f'shls/{link_id}/bundle.jwe',
            document_storage_keys=(f'shls/{link_id}/doc-doc_1.jwe',),
            patient_phone='+15551234567',
            expires_at=now + timedelta(days=90),
            created_at=now,
        )
        fields.update(overrides)
        return Link(**fields)

    return _make


@pytest.fixture
def settings():
    return HealthLinkSettings(
        api_url='http://test',
        viewer_url='https://viewer.test',
        session_secret=SESSION_SECRET,
        geolocation_enabled=False,
    )


@pytest.fixture
def storage():
    return InMemoryArtifactStorage(base_url='http://storage.test/artifacts')


@pytest_asyncio.fixture
async def session_store(session, other_session):
    store = InMemoryClinicalSessionStore()
    await store.save(session)
    await store.save(other_session)
    return store


@pytest.fixture
def app(settings, clinical, session_store, storage):
    return create_app(
        settings,
        clinical=clinical,
        session_store=session_store,
        storage=storage,
    )


def session_cookie(session_id: str = 'sess_1') -> dict[str, str]:
    return {COOKIE_NAME: issue_session_token(session_id, SESSION_SECRET)}


@pytest_asyncio.fixture
async def client(app):
    """Client signed in as the provider of ``session`` (patient pat_1)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url='http://test', cookies=session_cookie('sess_1'),
    ) as c:
        yield c


@pytest_asyncio.fixture
async def other_client(app):
    """Client signed in for a different patient (pat_2)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url='http://test', cookies=session_cookie('sess_2'),
    ) as c:
        yield c


@pytest_asyncio.fixture
async def public_client(app):
    """Client with no session cookie, as a link recipient would be."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as c:
        yield c


@pytest.fixture
def make_client():
    """Factory for clients against an ad hoc app, signed in as ``session_id``."""

    def _make(app, session_id: str | None = 'sess_1') -> AsyncClient:
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url='http://test',
            cookies=session_cookie(session_id) if session_id else None,
        )

    return _make
