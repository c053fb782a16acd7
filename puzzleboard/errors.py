from typing import Optional


class PuzzleboardError(Exception):
    category = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra_payload(self) -> dict:
        return {}

    def to_payload(self) -> dict:
        payload = {"error": self.category, "message": self.message}
        payload.update(self.extra_payload())
        return payload


class ValidationError(PuzzleboardError):
    category = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        missing: Optional[list] = None,
        invalid: Optional[list] = None,
        required: Optional[list] = None,
    ):
        super().__init__(message)
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        self.required = list(required or [])

    def extra_payload(self) -> dict:
        payload = {}
        if self.missing:
            payload["missing"] = self.missing
        if self.invalid:
            payload["invalid"] = self.invalid
        if self.required:
            payload["required"] = self.required
        return payload


class DuplicateSubmission(ValidationError):
    category = "duplicate_submission"
    status_code = 409

    def __init__(self, message: str, existing_count: int):
        super().__init__(message)
        self.existing_count = existing_count

    def extra_payload(self) -> dict:
        return {"existingCount": self.existing_count}


class AuthorizationError(PuzzleboardError):
    category = "unauthorized"
    status_code = 401

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint

    def extra_payload(self) -> dict:
        return {"hint": self.hint} if self.hint else {}


class StoreUnavailable(PuzzleboardError):
    category = "store_unavailable"
    status_code = 503

    def __init__(self, message: str, state: str):
        super().__init__(message)
        self.state = state

    def extra_payload(self) -> dict:
        return {"state": self.state}


class StoreOperationError(PuzzleboardError):
    category = "store_error"
    status_code = 500


class ExportGenerationError(PuzzleboardError):
    category = "export_error"
    status_code = 500
