"""
event_scoring/errors.py
Centralized error taxonomy for the assignment, bulk and CSV services.

Every terminal error raised by a service is an APIError subclass so the
HTTP boundary can serialize it without knowing where it came from.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

STATUS CODES:
- 400: Validation (malformed or missing input)
- 404: NotFound (referenced entity absent)
- 409: Conflict (uniqueness / duplicate violation)
"""

from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FORMAT = "INVALID_FORMAT"
    CSV_INVALID = "CSV_INVALID"
    CSV_NO_VALID_ROWS = "CSV_NO_VALID_ROWS"

    NOT_FOUND = "NOT_FOUND"
    ASSIGNMENT_NOT_FOUND = "ASSIGNMENT_NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    CONTEST_NOT_FOUND = "CONTEST_NOT_FOUND"
    CONTESTANT_NOT_FOUND = "CONTESTANT_NOT_FOUND"
    JUDGE_NOT_FOUND = "JUDGE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    CONFLICT = "CONFLICT"
    DUPLICATE_ASSIGNMENT = "DUPLICATE_ASSIGNMENT"
    DUPLICATE_CONTESTANT_ASSIGNMENT = "DUPLICATE_CONTESTANT_ASSIGNMENT"
    DUPLICATE_USER = "DUPLICATE_USER"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(APIError):
    """400 Bad Request - Malformed or missing input"""
    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="NotFound",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - Uniqueness violation"""
    def __init__(self, message: str, code: str = ErrorCode.CONFLICT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


def validate_required(data: Dict[str, Any], fields: list) -> None:
    """Raise ValidationError naming every missing or empty field."""
    missing = [
        field for field in fields
        if data.get(field) is None or (isinstance(data.get(field), str) and data[field].strip() == "")
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            code=ErrorCode.MISSING_FIELD,
            details={"fields": missing}
        )
