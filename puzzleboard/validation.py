import re
from dataclasses import dataclass, field
from typing import Optional

from .errors import ValidationError
from .fields import COMPLETION_FIELDS, QUIZ_FIELDS, insertable, required_payload_keys

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
INTEGER_PATTERN = re.compile(r"^-?\d+$")
# upper bound of the PostgreSQL INTEGER columns in the scores table
INTEGER_MAX = 2_147_483_647


@dataclass
class ValidationOutcome:
    record: Optional[dict] = None
    missing: list = field(default_factory=list)
    invalid: list = field(default_factory=list)
    message: str = ""
    required: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record is not None

    def raise_for_failure(self) -> dict:
        if self.ok:
            return self.record
        raise ValidationError(
            self.message, missing=self.missing, invalid=self.invalid, required=self.required
        )


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def is_missing(value) -> bool:
    # Zero is a value; only absent, null and blank strings count as missing.
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def parse_int_value(value, payload_key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{payload_key} must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and INTEGER_PATTERN.match(value.strip()):
        return int(value.strip())
    raise ValueError(f"{payload_key} must be a number")


def _validate(payload, fields, email_key: str) -> ValidationOutcome:
    required = required_payload_keys(fields)
    if not isinstance(payload, dict):
        return ValidationOutcome(message="JSON body must be an object", required=required)

    missing = [f.payload_key for f in fields if f.required and is_missing(payload.get(f.payload_key))]
    if missing:
        return ValidationOutcome(missing=missing, message="Missing required fields", required=required)

    record = {}
    invalid = []
    for f in insertable(fields):
        value = payload.get(f.payload_key)
        if value is None:
            record[f.column] = None
            continue
        if f.kind == "int":
            try:
                record[f.column] = parse_int_value(value, f.payload_key)
            except ValueError as exc:
                invalid.append(str(exc))
            continue
        record[f.column] = str(value).strip() if f.required else str(value)

    if invalid:
        return ValidationOutcome(invalid=invalid, message="Invalid field values")

    if not is_valid_email(record[_column_for(fields, email_key)]):
        return ValidationOutcome(invalid=[email_key], message="Invalid email format")

    return ValidationOutcome(record=record)


def _column_for(fields, payload_key: str) -> str:
    for f in fields:
        if f.payload_key == payload_key:
            return f.column
    raise KeyError(payload_key)


def validate_completion(payload) -> ValidationOutcome:
    outcome = _validate(payload, COMPLETION_FIELDS, "email")
    if not outcome.ok:
        return outcome

    record = outcome.record
    bad_ranges = []
    for column, payload_key in (
        ("completion_time", "completionTime"),
        ("difficulty", "difficulty"),
        ("move_count", "moveCount"),
    ):
        if record[column] < 0:
            bad_ranges.append(f"{payload_key} must be >= 0")
        elif record[column] > INTEGER_MAX:
            bad_ranges.append(f"{payload_key} must be <= {INTEGER_MAX}")
    if not 0 <= record["accuracy"] <= 100:
        bad_ranges.append("accuracy must be between 0 and 100")
    if bad_ranges:
        return ValidationOutcome(invalid=bad_ranges, message="Invalid field values")
    return outcome


def validate_quiz_submission(payload) -> ValidationOutcome:
    return _validate(payload, QUIZ_FIELDS, "participantEmail")
