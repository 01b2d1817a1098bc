class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_content(self) -> dict:
        return {"message": self.message, "details": self.details}


class InvalidArgumentError(AppError):
    """Raised when a decision function receives input outside its known vocabulary.

    This is a contract violation by the caller, not a business outcome.
    """
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)


class PermissionDeniedError(AppError):
    """Raised by the HTTP layer when an authorization predicate denies an action."""
    def __init__(self, message: str, code: str = "denied"):
        super().__init__(message, status_code=403, details={"code": code})


class BusinessRuleError(AppError):
    """Raised when a request is well-formed but refused by a domain rule."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)


class TimetableConflictError(AppError):
    """Raised when a timetable write would double-book a class, teacher or room."""
    def __init__(self, message: str, conflict_with: dict | None = None, conflicts: list[dict] | None = None):
        super().__init__(
            message,
            status_code=400,
            details={"conflictWith": conflict_with, "conflicts": conflicts or []},
        )

    def to_content(self) -> dict:
        # Clients of the timetable API read the clash from the top level.
        content = super().to_content()
        content["error"] = self.message
        content["conflictWith"] = self.details["conflictWith"]
        return content


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
