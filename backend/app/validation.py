from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from app.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any, Iterable

from flask import jsonify
from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Upper bound for any money field: 99,999,999.99
MAX_AMOUNT = Decimal("99999999.99")
CENT = Decimal("0.01")


class ServiceError(Exception):
    """
    Base for every business error raised by the service layer.

    Carries the response body shape used across the API:
    {"message": str, "errors": {field: [reasons]}}
    """
    status_code = 422

    def __init__(self, message: str, errors: dict | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(ServiceError):
    """422-level input problem."""


class NotFoundError(ServiceError):
    """404: primary entity does not exist."""
    status_code = 404


class AccessDeniedError(ServiceError):
    """403: entity-scoped access failure."""
    status_code = 403


class ConflictError(ServiceError):
    """409: the commit lost a lock or version race; nothing was saved."""
    status_code = 409


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.status_code


def to_money(value) -> Decimal:
    """Normalize a numeric value to a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def money_out(value) -> float:
    """Money as JSON number."""
    return float(to_money(value))


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValueError("must be an integer")
            return int(stripped)
        raise ValueError("must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValueError("must be a number")
        try:
            amount = to_money(value)
        except (InvalidOperation, ValueError):
            raise ValueError("must be a number")
        if amount < 0:
            raise ValueError("must be at least 0")
        if amount > MAX_AMOUNT:
            raise ValueError(f"may not be greater than {MAX_AMOUNT}")
        return amount

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            dt = parse_iso_datetime(value)
            if dt is None:
                raise ValueError("must be an ISO-8601 datetime")
            return dt
        raise ValueError("must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        d = parse_iso_date(value)
        if d is None:
            raise ValueError("must be a date (YYYY-MM-DD)")
        return d

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Unknown keys are ignored; every failing field is reported at once
    through ValidationError.errors.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: dict[str, list[str]] = {}
    required = policy.required_on_create or set()
    if not partial:
        for f in sorted(required):
            if payload.get(f) in (None, ""):
                errors.setdefault(f, []).append(f"The {f} field is required.")

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        if k in errors:
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                errors.setdefault(k, []).append(f"The {k} field cannot be null.")
            else:
                patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except (ValueError, InvalidOperation) as exc:
            errors.setdefault(k, []).append(f"The {k} field {exc}.")
            continue

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            errors.setdefault(k, []).append(f"The {k} field cannot be blank.")
            continue

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                errors.setdefault(k, []).append(
                    f"The {k} field may not be greater than {col.type.length} characters."
                )
                continue

        patch[k] = val

    if errors:
        raise ValidationError("The given data was invalid.", errors)
    return patch


class Payload:
    """
    Field-by-field reader for request bodies that do not map onto one model.

    Every accessor records failures under its (optionally prefixed) field
    name instead of raising, so one request reports every problem. Call
    validate() once all fields are read.
    """

    def __init__(self, data: dict | None, prefix: str = "", errors: dict | None = None):
        if data is not None and not isinstance(data, dict):
            data = {}
        self.data = data or {}
        self.prefix = prefix
        self.errors: dict[str, list[str]] = errors if errors is not None else {}

    def _key(self, field: str) -> str:
        return f"{self.prefix}{field}"

    def error(self, field: str, reason: str) -> None:
        self.errors.setdefault(self._key(field), []).append(reason)

    def has(self, field: str) -> bool:
        return field in self.data and self.data[field] is not None

    def nested(self, data: dict | None, prefix: str) -> "Payload":
        """Reader for a nested object sharing this reader's error dict."""
        return Payload(data, prefix=f"{self.prefix}{prefix}", errors=self.errors)

    def _missing(self, field: str, required: bool, default):
        if required:
            self.error(field, f"The {self._key(field)} field is required.")
        return default

    def string(self, field: str, *, required: bool = False, max_length: int | None = None, default=None):
        raw = self.data.get(field)
        if raw is None or (isinstance(raw, str) and raw.strip() == ""):
            return self._missing(field, required, default)
        value = str(raw).strip()
        if max_length and len(value) > max_length:
            self.error(field, f"The {self._key(field)} field may not be greater than {max_length} characters.")
        return value

    def integer(self, field: str, *, required: bool = False, minimum: int | None = None,
                maximum: int | None = None, default=None):
        raw = self.data.get(field)
        if raw is None or raw == "":
            return self._missing(field, required, default)
        if isinstance(raw, bool):
            self.error(field, f"The {self._key(field)} field must be an integer.")
            return default
        try:
            if isinstance(raw, float) and not raw.is_integer():
                raise ValueError
            value = int(raw)
        except (TypeError, ValueError):
            self.error(field, f"The {self._key(field)} field must be an integer.")
            return default
        if minimum is not None and value < minimum:
            self.error(field, f"The {self._key(field)} field must be at least {minimum}.")
        if maximum is not None and value > maximum:
            self.error(field, f"The {self._key(field)} field may not be greater than {maximum}.")
        return value

    def decimal(self, field: str, *, required: bool = False, minimum=None, maximum=None, default=None):
        raw = self.data.get(field)
        if raw is None or raw == "":
            return self._missing(field, required, default)
        if isinstance(raw, bool):
            self.error(field, f"The {self._key(field)} field must be a number.")
            return default
        try:
            value = to_money(raw)
        except (InvalidOperation, ValueError):
            self.error(field, f"The {self._key(field)} field must be a number.")
            return default
        if minimum is not None and value < to_money(minimum):
            self.error(field, f"The {self._key(field)} field must be at least {minimum}.")
        upper = to_money(maximum) if maximum is not None else MAX_AMOUNT
        if value > upper:
            self.error(field, f"The {self._key(field)} field may not be greater than {upper}.")
        return value

    def date(self, field: str, *, required: bool = False, not_before: date | None = None, default=None):
        raw = self.data.get(field)
        if raw is None or raw == "":
            return self._missing(field, required, default)
        try:
            value = parse_iso_date(raw)
        except (TypeError, ValueError):
            self.error(field, f"The {self._key(field)} field is not a valid date.")
            return default
        if not_before is not None and value < not_before:
            self.error(field, f"The {self._key(field)} field must be a date after or equal to {not_before.isoformat()}.")
        return value

    def datetime(self, field: str, *, required: bool = False, default=None):
        raw = self.data.get(field)
        if raw is None or raw == "":
            return self._missing(field, required, default)
        try:
            return parse_iso_datetime(str(raw))
        except ValueError:
            self.error(field, f"The {self._key(field)} field is not a valid datetime.")
            return default

    def choice(self, field: str, choices: Iterable[str], *, required: bool = False, default=None):
        raw = self.data.get(field)
        if raw is None or raw == "":
            return self._missing(field, required, default)
        choices = list(choices)
        if raw not in choices:
            self.error(field, f"The selected {self._key(field)} is invalid. Allowed: {', '.join(choices)}.")
            return default
        return raw

    def boolean(self, field: str, *, default: bool = False) -> bool:
        raw = self.data.get(field)
        if raw is None or raw == "":
            return default
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return bool(raw)
        return str(raw).strip().lower() in ("1", "true", "yes", "on")

    def list(self, field: str, *, required: bool = False, min_items: int = 0,
             max_items: int | None = None) -> list:
        raw = self.data.get(field)
        if raw is None:
            return self._missing(field, required, [])
        if not isinstance(raw, list):
            self.error(field, f"The {self._key(field)} field must be an array.")
            return []
        if required and len(raw) < max(min_items, 1):
            self.error(field, f"The {self._key(field)} field must have at least {max(min_items, 1)} items.")
        elif min_items and len(raw) < min_items:
            self.error(field, f"The {self._key(field)} field must have at least {min_items} items.")
        if max_items is not None and len(raw) > max_items:
            self.error(field, f"The {self._key(field)} field may not have more than {max_items} items.")
        return raw

    def id_list(self, field: str, *, required: bool = False) -> list[int]:
        ids = []
        for index, raw in enumerate(self.list(field, required=required)):
            try:
                if isinstance(raw, bool):
                    raise ValueError
                ids.append(int(raw))
            except (TypeError, ValueError):
                self.error(f"{field}.{index}", f"The {self._key(field)}.{index} field must be an integer.")
        return ids

    def validate(self, message: str = "The given data was invalid.") -> None:
        if self.errors:
            raise ValidationError(message, self.errors)
