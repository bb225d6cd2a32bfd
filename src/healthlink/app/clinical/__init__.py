"""Clinical collaborators: the EHR session and its data APIs."""

from .session import (
    ClinicalSession,
    ClinicalSessionMiddleware,
    ClinicalSessionStore,
    InMemoryClinicalSessionStore,
    get_clinical_session,
    issue_session_token,
    verify_session_token,
)
from .source import (
    ClinicalDataError,
    ClinicalDataSource,
    DocumentMetadata,
    HttpClinicalDataSource,
    InMemoryClinicalDataSource,
    patient_email,
    patient_phone,
)

__all__ = [
    'ClinicalDataError',
    'ClinicalDataSource',
    'ClinicalSession',
    'ClinicalSessionMiddleware',
    'ClinicalSessionStore',
    'DocumentMetadata',
    'HttpClinicalDataSource',
    'InMemoryClinicalDataSource',
    'InMemoryClinicalSessionStore',
    'get_clinical_session',
    'issue_session_token',
    'patient_email',
    'patient_phone',
    'verify_session_token',
]
