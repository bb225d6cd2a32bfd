"""Tests for clinical sessions, the session endpoints and the EHR data source.

Validates:
  - Session cookies are HS256 JWTs; bad, expired and orphaned cookies get 401.
  - Unprotected paths never require a session.
  - /api/session returns the patient summary and shareable documents.
  - An upstream 401 ends the session and clears the cookie.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from healthlink.app.clinical.routes import document_type_label, format_file_size
from healthlink.app.clinical.session import (
    InMemoryClinicalSessionStore,
    issue_session_token,
    verify_session_token,
)
from healthlink.app.clinical.source import (
    ClinicalDataError,
    DocumentMetadata,
    HttpClinicalDataSource,
    InMemoryClinicalDataSource,
    patient_email,
    patient_phone,
)
from healthlink.app.main import create_app

SECRET = 'test-session-secret-0123456789abcdef'
COOKIE = 'healthlink_session'


# =====================================================================
# Tokens
# =====================================================================


class TestSessionToken:

    def test_round_trip(self):
        token = issue_session_token('sess_1', SECRET)
        claims = verify_session_token(token, SECRET)
        assert claims['sub'] == 'sess_1'
        assert claims['type'] == 'session'
        assert claims['exp'] > claims['iat']

    def test_wrong_secret(self):
        token = issue_session_token('sess_1', SECRET)
        with pytest.raises(jwt.InvalidTokenError):
            verify_session_token(token, 'another-secret-another-secret-xx')

    def test_expired(self):
        token = issue_session_token('sess_1', SECRET, ttl_seconds=-10)
        with pytest.raises(jwt.ExpiredSignatureError):
            verify_session_token(token, SECRET)

    def test_missing_type_claim(self):
        token = jwt.encode({'sub': 'sess_1', 'exp': 9999999999}, SECRET, algorithm='HS256')
        with pytest.raises(jwt.MissingRequiredClaimError):
            verify_session_token(token, SECRET)


class TestSessionStore:

    @pytest.mark.asyncio
    async def test_expired_sessions_are_dropped(self, session):
        store = InMemoryClinicalSessionStore()
        await store.save(replace(session, expires_at=session.expires_at - timedelta(days=1)))
        assert await store.get('sess_1') is None

    @pytest.mark.asyncio
    async def test_delete(self, session):
        store = InMemoryClinicalSessionStore()
        await store.save(session)
        await store.delete('sess_1')
        assert await store.get('sess_1') is None

    def test_access_token_not_in_repr(self, session):
        assert 'ehr-bearer-token' not in repr(session)


# =====================================================================
# Middleware
# =====================================================================


class TestMiddleware:

    @pytest.mark.asyncio
    async def test_expired_cookie(self, app):
        token = issue_session_token('sess_1', SECRET, ttl_seconds=-10)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url='http://test',
            cookies={COOKIE: token},
        ) as c:
            r = await c.get('/api/session/check')
        assert r.status_code == 401
        assert r.json()['code'] == 'session_expired'

    @pytest.mark.asyncio
    async def test_unknown_session(self, app, make_client):
        async with make_client(app, session_id='sess_unknown') as c:
            r = await c.get('/api/session/check')
        assert r.status_code == 401
        assert r.json() == {
            'error': 'unauthorized', 'code': 'session_expired', 'detail': 'Session has expired',
        }

    @pytest.mark.asyncio
    async def test_forged_cookie(self, app):
        token = issue_session_token('sess_1', 'forged-secret-forged-secret-forged')
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url='http://test',
            cookies={COOKIE: token},
        ) as c:
            r = await c.get('/api/session/check')
        assert r.json()['code'] == 'invalid_session'

    @pytest.mark.asyncio
    async def test_public_paths_need_no_session(self, public_client):
        assert (await public_client.get('/health')).status_code == 200
        assert (await public_client.get('/metrics')).status_code == 200


# =====================================================================
# Session endpoints
# =====================================================================


class TestSessionRoutes:

    @pytest.mark.asyncio
    async def test_get_session(self, client):
        r = await client.get('/api/session')
        assert r.status_code == 200
        body = r.json()
        assert body['patient'] == {
            'id': 'pat_1',
            'name': 'Jane Doe',
            'birthDate': '1980-04-02',
            'gender': 'female',
            'phone': '+15551234567',
            'email': 'jane@example.com',
        }
        assert [d['id'] for d in body['documents']] == ['doc_1', 'doc_2']
        assert body['documents'][0]['type'] == 'Lab Result'
        assert body['documents'][0]['contentType'] == 'application/pdf'
        assert body['provider'] == {'id': 'prov_1', 'name': 'Dr. Ada Lovelace'}

    @pytest.mark.asyncio
    async def test_documents_scoped_to_patient(self, other_client):
        body = (await other_client.get('/api/session')).json()
        assert [d['id'] for d in body['documents']] == ['doc_9']
        assert body['documents'][0]['type'] == 'Document'

    @pytest.mark.asyncio
    async def test_check(self, client):
        r = await client.get('/api/session/check')
        assert r.json() == {'authenticated': True, 'patientId': 'pat_1'}

    @pytest.mark.asyncio
    async def test_logout(self, client, session_store):
        r = await client.post('/api/session/logout')
        assert r.status_code == 200
        assert r.json() == {'success': True}
        assert f'{COOKIE}=' in r.headers['set-cookie']
        assert await session_store.get('sess_1') is None
        assert (await client.get('/api/session/check')).status_code == 401

    @pytest.mark.asyncio
    async def test_upstream_401_ends_session(
        self, settings, clinical, session_store, storage, make_client,
    ):
        class ExpiredToken(InMemoryClinicalDataSource):
            async def get_patient(self, session):
                raise ClinicalDataError('token expired', status_code=401)

        app = create_app(
            settings,
            clinical=ExpiredToken(clinical.patients, clinical.documents),
            session_store=session_store,
            storage=storage,
        )
        async with make_client(app) as c:
            r = await c.get('/api/session')
        assert r.status_code == 401
        assert r.json()['error'] == 'Session expired'
        assert 'max-age=0' in r.headers['set-cookie'].lower()
        assert await session_store.get('sess_1') is None

    @pytest.mark.asyncio
    async def test_upstream_failure_is_502(
        self, settings, clinical, session_store, storage, make_client,
    ):
        class Broken(InMemoryClinicalDataSource):
            async def list_documents(self, session):
                raise ClinicalDataError('upstream returned 500', status_code=500)

        app = create_app(
            settings,
            clinical=Broken(clinical.patients, clinical.documents),
            session_store=session_store,
            storage=storage,
        )
        async with make_client(app) as c:
            r = await c.get('/api/session')
        assert r.status_code == 502
        assert r.json()['code'] == 'collaborator_unavailable'
        assert await session_store.get('sess_1') is not None


class TestFormatting:

    @pytest.mark.parametrize('size, expected', [
        (0, 'Unknown size'),
        (None, 'Unknown size'),
        (512, '512.0 B'),
        (2048, '2.0 KB'),
        (5 * 1024 * 1024, '5.0 MB'),
        (3 * 1024 ** 3, '3.0 GB'),
    ])
    def test_file_size(self, size, expected):
        assert format_file_size(size) == expected

    @pytest.mark.parametrize('raw, expected', [
        (None, 'Document'),
        ('lab_result', 'Lab Result'),
        ('Discharge Summary', 'Discharge Summary'),
        ('Custom Form', 'Custom Form'),
    ])
    def test_type_label(self, raw, expected):
        assert document_type_label(raw) == expected


# =====================================================================
# HTTP data source
# =====================================================================


def _source(handler) -> HttpClinicalDataSource:
    return HttpClinicalDataSource(
        'https://docs.test/v3/',
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestHttpClinicalDataSource:

    @pytest.mark.asyncio
    async def test_get_patient(self, session, patient):
        seen = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            seen['url'] = str(request.url)
            seen['headers'] = dict(request.headers)
            return httpx.Response(200, json=patient)

        assert await _source(handler).get_patient(session) == patient
        assert seen['url'] == 'https://fhir.test/r4/Patient/pat_1'
        assert seen['headers']['authorization'] == 'Bearer ehr-bearer-token'
        assert seen['headers']['accept'] == 'application/fhir+json'

    @pytest.mark.asyncio
    async def test_list_documents(self, session):
        seen = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            seen['path'] = request.url.path
            seen['params'] = parse_qs(urlparse(str(request.url)).query)
            return httpx.Response(200, json={'documents': [
                {
                    'documentGuid': 'doc_1',
                    'documentName': 'CBC Panel',
                    'documentType': 'Lab Result',
                    'documentDateTime': '2026-02-20T09:00:00Z',
                    'documentContentMetadata': {'mediaType': 'application/pdf', 'size': 1024},
                },
                {'documentGuid': 'doc_2'},
            ]})

        docs = await _source(handler).list_documents(session)

        assert seen['path'] == '/v3/documents'
        assert seen['params'] == {'patientPracticeGuid': ['pat_1']}
        assert docs[0] == DocumentMetadata(
            id='doc_1', name='CBC Panel', category='Lab Result',
            date='2026-02-20T09:00:00Z', media_type='application/pdf', size=1024,
        )
        assert docs[1].name == 'Untitled Document'
        assert docs[1].media_type == 'application/octet-stream'
        assert docs[1].size == 0

    @pytest.mark.asyncio
    async def test_get_document_content(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == '/v3/documents/doc_1/content'
            return httpx.Response(
                200, content=b'%PDF-1.4', headers={'content-type': 'application/pdf'},
            )

        content, media_type = await _source(handler).get_document_content(session, 'doc_1')
        assert content == b'%PDF-1.4'
        assert media_type == 'application/pdf'

    @pytest.mark.asyncio
    async def test_operation_outcome_message(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={
                'resourceType': 'OperationOutcome',
                'issue': [{'severity': 'error', 'code': 'forbidden', 'diagnostics': 'No access'}],
            })

        with pytest.raises(ClinicalDataError) as exc_info:
            await _source(handler).get_patient(session)
        assert exc_info.value.status_code == 403
        assert str(exc_info.value) == 'No access'

    @pytest.mark.asyncio
    async def test_plain_error(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text='oops')

        with pytest.raises(ClinicalDataError, match='upstream returned 500'):
            await _source(handler).get_document_metadata(session, 'doc_1')

    @pytest.mark.asyncio
    async def test_transport_error(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout('slow')

        with pytest.raises(ClinicalDataError) as exc_info:
            await _source(handler).get_document_content(session, 'doc_1')
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text='<html>maintenance</html>')

        with pytest.raises(ClinicalDataError, match='non-JSON'):
            await _source(handler).get_document_metadata(session, 'doc_1')
        with pytest.raises(ClinicalDataError):
            await _source(handler).get_patient(session)
        with pytest.raises(ClinicalDataError):
            await _source(handler).list_documents(session)

    @pytest.mark.asyncio
    @pytest.mark.parametrize('body', [
        {'documentName': 'missing id'},
        {'documentGuid': 'doc_1', 'documentContentMetadata': {'size': 'big'}},
        ['doc_1'],
    ])
    async def test_malformed_metadata(self, session, body):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        with pytest.raises(ClinicalDataError, match='malformed document metadata'):
            await _source(handler).get_document_metadata(session, 'doc_1')

    @pytest.mark.asyncio
    async def test_malformed_document_list(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={'documents': [{'documentName': 'no id'}]})

        with pytest.raises(ClinicalDataError, match='malformed document list'):
            await _source(handler).list_documents(session)

    @pytest.mark.asyncio
    async def test_patient_must_be_object(self, session):
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        with pytest.raises(ClinicalDataError, match='malformed patient resource'):
            await _source(handler).get_patient(session)

    @pytest.mark.asyncio
    async def test_aclose_only_closes_owned_client(self):
        shared = httpx.AsyncClient()
        await HttpClinicalDataSource('https://docs.test', http_client=shared).aclose()
        assert not shared.is_closed
        await shared.aclose()

        owned = HttpClinicalDataSource('https://docs.test')
        await owned.aclose()
        assert owned._client.is_closed


def test_patient_contacts(patient):
    assert patient_phone(patient) == '+15551234567'
    assert patient_email(patient) == 'jane@example.com'
    assert patient_phone({'telecom': [{'system': 'phone', 'value': '1', 'use': 'work'}]}) is None
