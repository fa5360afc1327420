from __future__ import annotations

from typing import Literal

# Canonical error vocabulary for log records. Row state only keeps "error".
ErrorCode = Literal[
    "channel_delivery_failed",
    "channel_timeout",
    "channel_no_outcome",
    "unsupported_variant",
    "claim_conflict",
    "store_unavailable",
    "internal_error",
]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "channel_delivery_failed",
    "channel_timeout",
    "channel_no_outcome",
    "unsupported_variant",
    "claim_conflict",
    "store_unavailable",
    "internal_error",
)

# Codes a processor may attach to a row-level "error" outcome.
ROW_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        "channel_delivery_failed",
        "channel_timeout",
        "channel_no_outcome",
        "unsupported_variant",
    }
)


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def resolve_error_code(code: str | None) -> ErrorCode:
    if code is not None and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    return "internal_error"


def resolve_row_error(code: str | None) -> ErrorCode:
    resolved = resolve_error_code(code)
    if resolved in ROW_ERROR_CODES:
        return resolved
    # Unknown channel codes still describe a delivery problem for the row.
    return "channel_delivery_failed"
