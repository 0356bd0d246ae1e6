class ServiceError(Exception):
    """Base for errors surfaced to callers of the document services."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.message}


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, violations):
        if isinstance(violations, str):
            violations = [violations]
        self.violations = list(violations)
        super().__init__(self.violations[0] if self.violations else "invalid input")

    def to_dict(self):
        return {"error": self.message, "violations": self.violations}


class PermissionDenied(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class StorageFailure(ServiceError):
    """Blob or database I/O failure. The message is always the generic one."""

    status_code = 503

    def __init__(self, message="Storage is temporarily unavailable. Please try again."):
        super().__init__(message)
