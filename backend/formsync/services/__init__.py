"""Service modules - Business logic layer"""
from .airtable_client import AirtableClient
from .credential_service import CredentialService, get_credential_service
from .auth_service import AuthService
from .form_service import FormService
from .submission_service import SubmissionService
from .subscription_service import SubscriptionService, get_subscription_service
from .notification_processor import NotificationProcessor, get_notification_processor

__all__ = [
    "AirtableClient",
    "CredentialService",
    "get_credential_service",
    "AuthService",
    "FormService",
    "SubmissionService",
    "SubscriptionService",
    "get_subscription_service",
    "NotificationProcessor",
    "get_notification_processor",
]
