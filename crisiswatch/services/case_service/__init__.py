"""Case Service: boundary to the external case-record system.

Components:
- case_client.py: CaseRecordClient (create/update/get/health over HTTP)
- payloads.py: case payloads built from a session and its analysis
"""

from .case_client import CaseRecordClient, CaseReference, CaseServiceError
from .payloads import build_case_payload, build_update_payload

__all__ = [
    "CaseRecordClient",
    "CaseReference",
    "CaseServiceError",
    "build_case_payload",
    "build_update_payload",
]
