"""
Input validation with friendly error messages.

Every validator returns a ValidationResult instead of raising, so tools can
report every bad parameter at once and never send a malformed query to
Socrata. Free-text values are escaped for embedding in SoQL string literals.

An empty string is always treated as "not provided".
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Pattern, Sequence, Union

import pandas as pd

from core.envelope import ErrorType, error_envelope

# ============================================================================
# Boroughs
# ============================================================================

BOROUGH_NAMES = ["MANHATTAN", "BRONX", "BROOKLYN", "QUEENS", "STATEN ISLAND"]
BOROUGH_CODES = ["1", "2", "3", "4", "5"]

BOROUGH_ALIASES = {
    "1": "MANHATTAN", "M": "MANHATTAN", "MN": "MANHATTAN",
    "2": "BRONX", "X": "BRONX", "BX": "BRONX",
    "3": "BROOKLYN", "K": "BROOKLYN", "B": "BROOKLYN", "BK": "BROOKLYN",
    "4": "QUEENS", "Q": "QUEENS", "QN": "QUEENS",
    "5": "STATEN ISLAND", "R": "STATEN ISLAND", "S": "STATEN ISLAND", "SI": "STATEN ISLAND",
}


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating one parameter (or a batch).

    Attributes:
        valid: Whether the input was accepted
        normalized: Canonical value when valid (None for absent optionals)
        error: Error envelope when invalid
    """
    valid: bool
    normalized: Any = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, normalized: Any = None) -> "ValidationResult":
        return cls(valid=True, normalized=normalized)

    @classmethod
    def fail(
        cls,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        guidance: Optional[str] = None,
    ) -> "ValidationResult":
        return cls(
            valid=False,
            error=error_envelope(ErrorType.INVALID_INPUT, message, details, guidance),
        )


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def escape_soql(text: str) -> str:
    """Escape a value for a SoQL single-quoted string literal."""
    return str(text).replace("'", "''")


# ============================================================================
# Validators
# ============================================================================

def validate_borough(value: Any, required: bool = False) -> ValidationResult:
    """
    Validate a borough name or code.

    Accepts full names, 1- and 2-letter codes and numeric codes 1-5, in any
    case. The normalized value is always the uppercase full name.
    """
    if _is_missing(value):
        if required:
            return ValidationResult.fail(
                'Parameter "borough" is required',
                details={"param": "borough", "valid_names": BOROUGH_NAMES},
                guidance=f"Provide one of: {', '.join(BOROUGH_NAMES)}",
            )
        return ValidationResult.ok()

    upper = " ".join(str(value).strip().upper().split())

    if upper in BOROUGH_NAMES:
        return ValidationResult.ok(upper)
    if upper in BOROUGH_ALIASES:
        return ValidationResult.ok(BOROUGH_ALIASES[upper])

    return ValidationResult.fail(
        f"Invalid borough: '{value}'. Must be one of: {', '.join(BOROUGH_NAMES)} or codes 1-5",
        details={
            "param": "borough",
            "provided": value,
            "valid_names": BOROUGH_NAMES,
            "valid_codes": BOROUGH_CODES,
        },
        guidance='Use borough names (e.g., "MANHATTAN"), short codes (e.g., "BX") or numeric codes (1-5)',
    )


def _validate_integer(
    value: Any,
    name: str,
    min_value: int,
    max_value: int,
    default: Optional[int],
    required: bool,
) -> ValidationResult:
    if _is_missing(value):
        if required:
            return ValidationResult.fail(
                f'Parameter "{name}" is required',
                details={"param": name},
                guidance=f"Provide an integer between {min_value} and {max_value}",
            )
        return ValidationResult.ok(default)

    # bool is an int subclass but never a meaningful count
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        return ValidationResult.fail(
            f'Parameter "{name}" must be an integer, got: {value!r} ({type(value).__name__})',
            details={"param": name, "provided": value, "type": type(value).__name__},
            guidance=f"Provide an integer between {min_value} and {max_value}",
        )

    if value < min_value or value > max_value:
        return ValidationResult.fail(
            f'Parameter "{name}" must be between {min_value} and {max_value}, got: {value}',
            details={
                "param": name,
                "provided": value,
                "valid_range": {"min": min_value, "max": max_value},
            },
            guidance=f"Use a value between {min_value} and {max_value}",
        )

    return ValidationResult.ok(value)


def validate_days(
    value: Any,
    min_value: int = 1,
    max_value: int = 365,
    default: Optional[int] = None,
    required: bool = False,
) -> ValidationResult:
    """Validate a look-back window in days."""
    return _validate_integer(value, "days", min_value, max_value, default, required)


def validate_limit(
    value: Any,
    min_value: int = 1,
    max_value: int = 1000,
    default: int = 100,
) -> ValidationResult:
    """Validate a result limit; absent values fall back to ``default``."""
    return _validate_integer(value, "limit", min_value, max_value, default, False)


def validate_string(
    value: Any,
    name: str = "parameter",
    max_length: int = 1000,
    pattern: Optional[Union[str, Pattern[str]]] = None,
    required: bool = False,
) -> ValidationResult:
    """
    Validate a free-text parameter and escape it for SoQL.

    Args:
        value: Raw input
        name: Parameter name for error messages
        max_length: Longest accepted string
        pattern: Optional regex the whole value must match
        required: Whether an absent value is an error

    Returns:
        ValidationResult with the escaped string (or None when absent)
    """
    if _is_missing(value):
        if required:
            return ValidationResult.fail(
                f'Parameter "{name}" is required',
                details={"param": name},
                guidance="Provide a non-empty string value",
            )
        return ValidationResult.ok()

    text = str(value)

    if len(text) > max_length:
        return ValidationResult.fail(
            f'Parameter "{name}" exceeds maximum length of {max_length} characters',
            details={"param": name, "provided_length": len(text), "max_length": max_length},
            guidance=f"Shorten your input to {max_length} characters or less",
        )

    if pattern is not None:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        if not compiled.fullmatch(text):
            return ValidationResult.fail(
                f'Parameter "{name}" contains invalid characters',
                details={"param": name, "provided": text, "pattern": compiled.pattern},
                guidance="Use only alphanumeric characters and basic punctuation",
            )

    return ValidationResult.ok(escape_soql(text))


def validate_enum(
    value: Any,
    options: Sequence[str],
    name: str = "parameter",
    required: bool = False,
    default: Optional[str] = None,
) -> ValidationResult:
    """Case-insensitive enum match returning the canonically-cased option."""
    if _is_missing(value):
        if required:
            return ValidationResult.fail(
                f'Parameter "{name}" is required',
                details={"param": name, "valid_options": list(options)},
                guidance=f"Provide one of: {', '.join(options)}",
            )
        return ValidationResult.ok(default)

    lowered = str(value).strip().lower()
    for option in options:
        if option.lower() == lowered:
            return ValidationResult.ok(option)

    return ValidationResult.fail(
        f"Invalid {name}: '{value}'. Must be one of: {', '.join(options)}",
        details={"param": name, "provided": value, "valid_options": list(options)},
        guidance=f"Use one of the valid options: {', '.join(options)}",
    )


def validate_bool(value: Any, name: str, default: bool) -> ValidationResult:
    if _is_missing(value):
        return ValidationResult.ok(default)
    if isinstance(value, bool):
        return ValidationResult.ok(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return ValidationResult.ok(value.strip().lower() == "true")
    return ValidationResult.fail(
        f'Parameter "{name}" must be a boolean, got: {value!r}',
        details={"param": name, "provided": value},
        guidance="Use true or false",
    )


def validate_date(value: Any, name: str = "date", required: bool = False) -> ValidationResult:
    """Validate an ISO-8601 date (or datetime) string."""
    if _is_missing(value):
        if required:
            return ValidationResult.fail(
                f'Parameter "{name}" is required',
                details={"param": name},
                guidance="Provide a date in YYYY-MM-DD format",
            )
        return ValidationResult.ok()

    if isinstance(value, datetime):
        return ValidationResult.ok(value)

    parsed = pd.to_datetime(str(value), errors="coerce")
    if pd.isna(parsed):
        return ValidationResult.fail(
            f'Invalid date format for "{name}": {value}',
            details={"param": name, "provided": value},
            guidance='Use ISO 8601 format: YYYY-MM-DD (e.g., "2025-01-15")',
        )

    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    return ValidationResult.ok(parsed.to_pydatetime())


# ============================================================================
# Batch validation
# ============================================================================

def batch_validate(results: Mapping[str, ValidationResult]) -> ValidationResult:
    """
    Combine per-parameter results.

    Returns a single VALIDATION_ERROR envelope listing every failing
    parameter, or a result whose ``normalized`` is a name -> value mapping.
    """
    errors = []
    normalized: Dict[str, Any] = {}

    for param, result in results.items():
        if not result.valid:
            error = dict(result.error["error"]) if result.error else {}
            error["param"] = param
            errors.append(error)
        else:
            normalized[param] = result.normalized

    if errors:
        return ValidationResult(
            valid=False,
            error=error_envelope(
                ErrorType.VALIDATION_ERROR,
                f"Validation failed for {len(errors)} parameter(s)",
                details={"errors": errors},
                guidance="; ".join(e["guidance"] for e in errors if e.get("guidance")),
            ),
        )

    return ValidationResult.ok(normalized)
