"""
HTTP Exception Classes for the Plugin Server

Every error a handler returns to the client is raised as a PluginServerError
subclass and rendered by the handlers in exception_handlers.py.  Collaborator
(domain) errors live in plugin_server.plugins.errors and are translated into
these at the route layer.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes included in every error response."""

    # Auth
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DUPLICATE_RESOURCE = "VALIDATION_DUPLICATE_RESOURCE"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PLUGIN_NOT_FOUND = "PLUGIN_NOT_FOUND"
    PLUGIN_FILE_NOT_FOUND = "PLUGIN_FILE_NOT_FOUND"

    # Plugin lifecycle
    PLUGIN_ALREADY_INSTALLED = "PLUGIN_ALREADY_INSTALLED"
    PLUGIN_VERSION_UNSUPPORTED = "PLUGIN_VERSION_UNSUPPORTED"
    PLUGIN_VERSION_NOT_FOUND = "PLUGIN_VERSION_NOT_FOUND"
    PLUGIN_CORE_PROTECTED = "PLUGIN_CORE_PROTECTED"
    PLUGIN_CATALOG_ERROR = "PLUGIN_CATALOG_ERROR"

    # Backend plugins
    PLUGIN_UNAVAILABLE = "PLUGIN_UNAVAILABLE"
    PLUGIN_HEALTH_CHECK_FAILED = "PLUGIN_HEALTH_CHECK_FAILED"

    # Dashboards
    DASHBOARD_PRECONDITION_FAILED = "DASHBOARD_PRECONDITION_FAILED"
    QUOTA_REACHED = "QUOTA_REACHED"

    # Generic
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class PluginServerError(Exception):
    """Base exception class for all errors rendered by the API"""

    default_error_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(PluginServerError):
    """Raised when the bearer token is missing or invalid"""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, error_code=ErrorCode.AUTH_FAILED)


class AuthorizationError(PluginServerError):
    """Raised when the signed-in user lacks the role for an action"""

    def __init__(self, message: str = "Permission denied", required_role: str | None = None):
        details = {"required_role": required_role} if required_role else {}
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.AUTH_PERMISSION_DENIED,
            details=details,
        )


# ============================================================================
# Client Errors
# ============================================================================


class NotFoundError(PluginServerError):
    """Raised when a plugin, file or dashboard does not exist"""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND, error_code=error_code, details=details)


class PluginNotFoundError(NotFoundError):
    """Raised when no installed plugin matches the requested id"""

    def __init__(self, message: str = "Plugin not found", plugin_id: str | None = None):
        details = {"plugin_id": plugin_id} if plugin_id else None
        super().__init__(message=message, error_code=ErrorCode.PLUGIN_NOT_FOUND, details=details)


class BadRequestError(PluginServerError):
    """Raised when a request is syntactically valid but unusable"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=details,
        )


class UnprocessableError(PluginServerError):
    """Raised when required request content is absent"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=ErrorCode.VALIDATION_FAILED,
        )


class ConflictError(PluginServerError):
    """Raised when the requested change conflicts with installed state"""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.VALIDATION_DUPLICATE_RESOURCE):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT, error_code=error_code)


class ForbiddenError(PluginServerError):
    """Raised when an operation is never permitted on the target"""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_PERMISSION_DENIED):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, error_code=error_code)


class PreconditionFailedError(PluginServerError):
    """Raised when a dashboard save would clobber an existing dashboard"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            error_code=ErrorCode.DASHBOARD_PRECONDITION_FAILED,
            details=details,
        )


# ============================================================================
# Server Errors
# ============================================================================


class InternalError(PluginServerError):
    """Raised when a collaborator fails unexpectedly"""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    ):
        details = {"cause": str(cause)} if cause is not None else None
        super().__init__(message=message, error_code=error_code, details=details)


class NotImplementedAPIError(PluginServerError):
    """Raised when the requested content cannot be produced at all"""

    def __init__(self, message: str, cause: BaseException | None = None):
        details = {"cause": str(cause)} if cause is not None else None
        super().__init__(
            message=message,
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            error_code=ErrorCode.NOT_IMPLEMENTED,
            details=details,
        )


class ServiceUnavailableError(PluginServerError):
    """Raised when a backend plugin process cannot be reached"""

    def __init__(self, message: str = "Plugin unavailable", cause: BaseException | None = None):
        details = {"cause": str(cause)} if cause is not None else None
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code=ErrorCode.PLUGIN_UNAVAILABLE,
            details=details,
        )
