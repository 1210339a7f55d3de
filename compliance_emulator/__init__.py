"""In-process emulator of a PostgREST-style data service for GDPR workflows.

Usage::

    from compliance_emulator import create_client
    from compliance_emulator.services import DataSubjectRequestRepository

    client = create_client()
    requests = DataSubjectRequestRepository(client)
    overdue = requests.get_overdue()
"""

from compliance_emulator.config import Settings, get_settings
from compliance_emulator.database import ComplianceClient, QueryResult, create_client

__all__ = [
    "ComplianceClient",
    "QueryResult",
    "Settings",
    "create_client",
    "get_settings",
]

__version__ = "0.1.0"
