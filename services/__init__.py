"""
Business logic services for Identity Reconciliation API
Contains core identity reconciliation algorithms and the contact
queries they run against storage.
"""

from .contact_store import ContactStore
from .identity_service import IdentityService, identity_service

# Export all services for easy importing
__all__ = [
    "ContactStore",
    "IdentityService",
    "identity_service"
]
