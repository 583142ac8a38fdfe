"""
Error taxonomy.

Every error the core raises on purpose is an `AppError`; main.py turns them
into `{"error": code, "message": message}` responses with `status_code`.
"""


class AppError(Exception):
    code = "SERVER_ERROR"
    status_code = 500
    message = "An unexpected error occurred"

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)


# ----------------- Sessions -----------------

class AuthRequired(AppError):
    code = "AUTH_REQUIRED"
    status_code = 401
    message = "Authentication required"


class InvalidOrExpiredSession(AppError):
    code = "INVALID_TOKEN"
    status_code = 401
    message = "Invalid or expired token"


class ExpiredToken(InvalidOrExpiredSession):
    message = "Session expired. Please login again."


class MalformedToken(InvalidOrExpiredSession):
    message = "Invalid session token"


class SubjectNotFound(AppError):
    code = "USER_NOT_FOUND"
    status_code = 401
    message = "User no longer exists"


# ----------------- Authorization -----------------

class AdminRequired(AppError):
    code = "ADMIN_REQUIRED"
    status_code = 403
    message = "Admin access required"


class NotOwner(AppError):
    code = "NOT_OWNER"
    status_code = 403
    message = "You are not authorized to modify this resource"


class SelfModification(AppError):
    code = "SELF_MODIFICATION"
    status_code = 400
    message = "Cannot modify your own admin account"


# ----------------- Data -----------------

class NotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"


class ConflictError(AppError):
    code = "CONFLICT"
    status_code = 409
    message = "Concurrent update conflict"


# ----------------- Upstreams -----------------

class UpstreamAssetError(AppError):
    code = "ASSET_ERROR"
    status_code = 502
    message = "Asset storage failed"


class TransientStoreError(AppError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    message = "Database temporarily unavailable, please retry"


class CascadeIncomplete(TransientStoreError):
    """Some dependents were not deleted; the parent record was kept so the
    delete can be retried."""

    code = "CASCADE_INCOMPLETE"
    message = "Deletion did not complete, please retry"
