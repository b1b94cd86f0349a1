"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection
from .credential_repo import CredentialRepository
from .form_repo import FormRepository
from .submission_repo import SubmissionRepository
from .subscription_repo import SubscriptionRepository
from .auth_state_repo import AuthStateRepository

__all__ = [
    "get_database",
    "get_collection",
    "CredentialRepository",
    "FormRepository",
    "SubmissionRepository",
    "SubscriptionRepository",
    "AuthStateRepository",
]
