"""FHIR bundle assembly for a link.

A link's bundle is a FHIR ``Bundle`` of type ``collection``: the Patient
resource followed by one ``DocumentReference`` per shared document.

Attachment content types:
  ``attachment.contentType`` is the *decrypted* media type (for example
  ``application/pdf``), not ``application/jose``. The attachment URL always
  returns an encrypted envelope, and the key that opens the bundle also
  opens every document it references. A viewer decrypts first and then uses
  ``contentType`` to render. This deliberately differs from plain FHIR
  interop, where ``contentType`` describes the bytes at the URL.

Assembly is pure: the clock and the entry-id factory are parameters.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

BUNDLE_CONTENT_TYPE = 'application/fhir+json'
DEFAULT_DOCUMENT_MEDIA_TYPE = 'application/octet-stream'

US_CORE_DOCUMENT_REFERENCE_PROFILE = (
    'http://hl7.org/fhir/us/core/StructureDefinition/us-core-documentreference'
)
NULL_FLAVOR_SYSTEM = 'http://terminology.hl7.org/CodeSystem/v3-NullFlavor'
DOCUMENT_CATEGORY_SYSTEM = (
    'http://hl7.org/fhir/us/core/CodeSystem/us-core-documentreference-category'
)


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """One shared document as referenced from the bundle.

    ``url`` points at the encrypted envelope for this document.
    """

    id: str
    name: str
    category: str | None
    date: str | None
    media_type: str
    size: int
    url: str


def _urn_uuid() -> str:
    return f'urn:uuid:{uuid.uuid4()}'


def patient_display_name(patient: dict[str, Any]) -> str:
    """Display name from a FHIR Patient resource."""
    names = patient.get('name') or []
    if not names:
        return 'Unknown Patient'
    name = names[0]
    if name.get('text'):
        return name['text']

    parts: list[str] = []
    parts.extend(name.get('prefix') or [])
    parts.extend(name.get('given') or [])
    if name.get('family'):
        parts.append(name['family'])
    parts.extend(name.get('suffix') or [])
    return ' '.join(parts) or 'Unknown Patient'


def build_document_reference(
    document: DocumentRecord, patient_id: str,
) -> dict[str, Any]:
    return {
        'resourceType': 'DocumentReference',
        'id': f'doc-{document.id}',
        'meta': {'profile': [US_CORE_DOCUMENT_REFERENCE_PROFILE]},
        'status': 'current',
        'type': {
            'coding': [{
                'system': NULL_FLAVOR_SYSTEM,
                'code': 'UNK',
                'display': document.category or 'Document',
            }],
        },
        'category': [{
            'coding': [{
                'system': DOCUMENT_CATEGORY_SYSTEM,
                'code': 'clinical-note',
            }],
        }],
        'subject': {'reference': f'Patient/{patient_id}'},
        'date': document.date,
        'content': [{
            'attachment': {
                'contentType': document.media_type or DEFAULT_DOCUMENT_MEDIA_TYPE,
                'url': document.url,
                'title': document.name,
                'size': document.size,
            },
        }],
    }


def assemble_bundle(
    patient: dict[str, Any],
    documents: Iterable[DocumentRecord],
    *,
    now: datetime,
    id_factory: Callable[[], str] = _urn_uuid,
) -> dict[str, Any]:
    """Build the collection bundle: the patient, then each document."""
    patient_id = patient.get('id', '')
    entries = [{'fullUrl': id_factory(), 'resource': patient}]
    for document in documents:
        entries.append({
            'fullUrl': id_factory(),
            'resource': build_document_reference(document, patient_id),
        })
    return {
        'resourceType': 'Bundle',
        'type': 'collection',
        'timestamp': now.isoformat(),
        'entry': entries,
    }
