"""End-to-end tests: issue through the API, open as a recipient.

The viewer's HTTP client talks to the app for the manifest and to the
in-memory storage for envelope downloads.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from healthlink.app.crypto.envelope import ContentCipher
from healthlink.app.errors import DecryptionError
from healthlink.app.links.viewer import ViewerClient, ViewerError

ISSUE_BODY = {'documentIds': ['doc_1', 'doc_2'], 'phone': '+15551234567'}


@pytest_asyncio.fixture
async def viewer(app, storage):
    asgi = httpx.ASGITransport(app=app)

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == 'storage.test':
            key = storage.key_from_url(str(request.url))
            if key not in storage.objects:
                return httpx.Response(404)
            return httpx.Response(200, content=storage.get(key))
        return await asgi.handle_async_request(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        yield ViewerClient(http)


async def _issue(client) -> dict:
    r = await client.post('/api/shl', json=ISSUE_BODY)
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_recipient_opens_bundle_and_documents(client, viewer, clinical):
    issued = await _issue(client)

    viewed = await viewer.open_link(issued['shlink'], 'Dr. Smith')

    assert viewed.payload.url == f"http://test/shl/{issued['id']}/manifest"
    assert viewed.bundle['resourceType'] == 'Bundle'
    attachments = viewed.attachments
    assert [a['contentType'] for a in attachments] == ['application/pdf', 'text/plain']
    pdf = await viewer.open_attachment(viewed, attachments[0])
    note = await viewer.open_attachment(viewed, attachments[1])
    assert [pdf.plaintext, note.plaintext] == [content for _, content in clinical.documents['pat_1']]


@pytest.mark.asyncio
async def test_viewer_url_works_too(client, viewer):
    issued = await _issue(client)
    viewed = await viewer.open_link(issued['viewerUrl'], 'Dr. Smith')
    assert len(viewed.attachments) == 2


@pytest.mark.asyncio
async def test_access_is_logged_with_recipient(client, viewer):
    issued = await _issue(client)
    await viewer.open_link(issued['shlink'], 'Dr. Smith')
    details = (await client.get(f"/api/shls/{issued['id']}")).json()
    assert details['accessCount'] == 1
    assert details['accessLog'][0]['recipient'] == 'Dr. Smith'


@pytest.mark.asyncio
async def test_revoked_link_refused(client, viewer):
    issued = await _issue(client)
    await client.post(f"/api/shls/{issued['id']}/revoke")

    with pytest.raises(ViewerError) as exc_info:
        await viewer.open_link(issued['shlink'], 'Dr. Smith')
    assert exc_info.value.status_code == 410
    assert exc_info.value.reason == 'revoked'
    assert str(exc_info.value) == 'This link has been revoked'


@pytest.mark.asyncio
async def test_tampered_key_cannot_decrypt(client, viewer):
    issued = await _issue(client)
    viewed = await viewer.open_link(issued['shlink'], 'Dr. Smith')
    envelope = await viewer._download(viewed.attachments[0]['url'])
    with pytest.raises(DecryptionError):
        ContentCipher().open(envelope, bytes(32))


@pytest.mark.asyncio
async def test_malformed_link_rejected(viewer):
    with pytest.raises(ValueError):
        await viewer.open_link('shlink:/not-base64!', 'Dr. Smith')
