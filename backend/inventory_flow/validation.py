from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text

from .models import CUSTOMER_TYPES
from .services.errors import InvalidArgumentError


# 9,999,999.99 per piece; anything above is a typo, not a price
MAX_PRICE_CENTS = 999_999_999
# Balances live in 32-bit integer columns
MAX_BALANCE_CENTS = 2_147_483_647


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What a client may send for one model:
    - writable_fields: allowlist (security boundary)
    - required_on_create: fields a create payload must carry
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku",
        "name",
        "description",
        "price_per_piece_cents",
        "wholesale_cost_per_piece_cents",
        "pieces_per_case",
        "low_stock_threshold",
        "is_active",
    }),
    required_on_create=frozenset({"sku", "name", "price_per_piece_cents"}),
)


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name",
        "phone",
        "email",
        "address",
        "customer_type",
        "credit_limit_cents",
        "is_active",
    }),
    required_on_create=frozenset({"name", "phone"}),
)


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: no floats, no booleans, no '1e3' or '12.5' strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidArgumentError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise InvalidArgumentError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise InvalidArgumentError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise InvalidArgumentError(f"{key} must be an integer")
    if isinstance(value, float):
        raise InvalidArgumentError(f"{key} must be an integer, not a decimal")
    raise InvalidArgumentError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    if value is None:
        return None

    coltype = col.type
    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise InvalidArgumentError(f"{col.key} must be true or false")
    if isinstance(coltype, (String, Text)):
        return str(value).strip()
    return value


def validate_payload(*, model, payload: dict | None, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Validate and normalize incoming JSON against the model's column metadata
    (nullable, type, String length) and the policy allowlist.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidArgumentError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise InvalidArgumentError(f"Missing required fields: {', '.join(missing)}")

    cols = {c.key: c for c in model.__mapper__.columns}

    for k in payload:
        if k not in policy.writable_fields or k not in cols:
            raise InvalidArgumentError(f"Field not allowed: {k}", details={"field": k})

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise InvalidArgumentError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise InvalidArgumentError(f"{k} cannot be blank")
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise InvalidArgumentError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules that column metadata alone does not capture."""
    for key in ("price_per_piece_cents", "wholesale_cost_per_piece_cents"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise InvalidArgumentError(f"{key} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise InvalidArgumentError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if "pieces_per_case" in patch and patch["pieces_per_case"] < 1:
        raise InvalidArgumentError("pieces_per_case must be >= 1")

    if "low_stock_threshold" in patch and patch["low_stock_threshold"] < 0:
        raise InvalidArgumentError("low_stock_threshold must be >= 0")


def enforce_rules_customer(patch: dict) -> None:
    if "customer_type" in patch and patch["customer_type"] not in CUSTOMER_TYPES:
        raise InvalidArgumentError(
            "Unknown customer type",
            details={"customer_type": patch["customer_type"], "allowed": list(CUSTOMER_TYPES)},
        )

    limit = patch.get("credit_limit_cents")
    if limit is not None and not 0 <= limit <= MAX_BALANCE_CENTS:
        raise InvalidArgumentError("credit_limit_cents out of range")

    if "email" in patch and patch["email"] == "":
        patch["email"] = None
    if "address" in patch and patch["address"] == "":
        patch["address"] = None
