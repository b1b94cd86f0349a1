"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Authentication & Authorization Errors
class AuthenticationError(DomainError):
    """Session token missing, invalid, or expired"""
    error_code = "AUTHENTICATION_ERROR"
    http_status = 401


class AuthExpiredError(AuthenticationError):
    """Delegated Airtable credential is unusable - reauthorization required"""
    error_code = "AUTH_EXPIRED"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        details = dict(details or {})
        details.setdefault("requires_reauth", True)
        super().__init__(message, details, error_code)


class AuthorizationError(DomainError):
    """Caller lacks permission for action"""
    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class PermissionDeniedError(AuthorizationError):
    """Specific permission denied"""
    error_code = "PERMISSION_DENIED"


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"
    http_status = 400


class RuleValidationError(ValidationError):
    """Conditional rules of a form definition are invalid"""
    error_code = "RULE_VALIDATION_ERROR"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"
    http_status = 404


class FormNotFoundError(NotFoundError):
    """Form not found"""
    error_code = "FORM_NOT_FOUND"


class CredentialNotFoundError(NotFoundError):
    """No credential stored for account"""
    error_code = "CREDENTIAL_NOT_FOUND"


class SubmissionNotFoundError(NotFoundError):
    """Submission record not found"""
    error_code = "SUBMISSION_NOT_FOUND"


class SubscriptionNotFoundError(NotFoundError):
    """Subscription not found"""
    error_code = "SUBSCRIPTION_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict (e.g., uniqueness violation)"""
    error_code = "CONFLICT"
    http_status = 409


class DuplicateQuestionKeyError(ConflictError):
    """Question keys must be unique within a form"""
    error_code = "DUPLICATE_QUESTION_KEY"


# External Service Errors
class ExternalServiceError(DomainError):
    """External service rejected the request"""
    error_code = "EXTERNAL_SERVICE_ERROR"
    http_status = 502


class UpstreamUnavailableError(ExternalServiceError):
    """Transport failure, timeout, throttling or 5xx from Airtable"""
    error_code = "UPSTREAM_UNAVAILABLE"
    http_status = 503
