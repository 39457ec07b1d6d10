# Overview: Service-layer operations for customers; registry upkeep and the installment balance.

"""
Customers Service

A customer's outstanding balance is a second shared counter next to
on-hand stock, and follows the same rules: it moves only under a row lock,
never goes below zero, and every payment leaves an append-only
CustomerPayment row with the balance before and after.

BALANCE MOVEMENTS:
- confirm of an installment order: + order total (order_service)
- cancel of a confirmed installment order: - order total, floored at zero
- record_payment: - amount, never more than the balance

LOCK ORDER:
order row, return row, customer row, then products ascending. The customer
lock therefore sits between the document locks and the stock locks.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, CustomerPayment, Order
from ..validation import CUSTOMER_POLICY, enforce_rules_customer, validate_payload
from .concurrency import lock_for_update, run_in_transaction
from .errors import ConflictError, InvalidArgumentError, NotFoundError
from . import permission_service


PAYMENT_METHODS = ("cash", "gcash", "bank_transfer", "check", "credit")
REFERENCE_REQUIRED_METHODS = frozenset({"gcash", "bank_transfer", "check", "credit"})


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_POLICY.writable_fields:
            continue
        setattr(c, k, v)


# =============================================================================
# IN-TRANSACTION PRIMITIVES
# =============================================================================


def lock_customer(customer_id: int) -> Customer:
    customer = (
        lock_for_update(db.session.query(Customer).filter(Customer.id == customer_id))
        .populate_existing()
        .one_or_none()
    )
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def charge_installment(customer: Customer, amount_cents: int) -> None:
    """Add an installment order's total to a locked customer's balance."""
    if not customer.is_active:
        raise InvalidArgumentError("Customer is not active", details={"customer_id": customer.id})
    customer.outstanding_balance_cents += amount_cents


def reverse_installment(customer: Customer, amount_cents: int) -> int:
    """
    Take a cancelled installment order's total back off the balance.

    Payments already recorded against it stay recorded, so the balance is
    floored at zero. Returns the amount actually reversed.
    """
    reversed_cents = min(amount_cents, customer.outstanding_balance_cents)
    customer.outstanding_balance_cents -= reversed_cents
    return reversed_cents


# =============================================================================
# REGISTRY
# =============================================================================


def list_customers(*, active_only: bool = False, search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if active_only:
        q = q.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Customer.name.ilike(like), Customer.phone.ilike(like)))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def create_customer(*, payload: dict, actor_user_id: int | None) -> Customer:
    """Register a customer. The balance always starts at zero."""
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    enforce_rules_customer(patch)

    def _op():
        permission_service.require_admin(actor_user_id)
        c = Customer(outstanding_balance_cents=0)
        apply_customer_patch(c, patch)
        db.session.add(c)
        db.session.flush()
        return c

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def update_customer(*, customer_id: int, payload: dict, actor_user_id: int | None) -> Customer:
    """Patch contact fields. outstanding_balance_cents is not writable here."""
    if isinstance(payload, dict) and "outstanding_balance_cents" in payload:
        raise InvalidArgumentError(
            "outstanding_balance_cents only changes through orders and payments",
            details={"field": "outstanding_balance_cents"},
        )
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    enforce_rules_customer(patch)

    def _op():
        permission_service.require_admin(actor_user_id)
        c = lock_customer(customer_id)
        apply_customer_patch(c, patch)
        return c

    return run_in_transaction(_op, actor_user_id=actor_user_id)


def delete_customer(*, customer_id: int, actor_user_id: int | None) -> None:
    """Delete a customer with no orders, no payments and nothing owed."""
    def _op():
        permission_service.require_admin(actor_user_id)
        c = lock_customer(customer_id)

        if c.outstanding_balance_cents:
            raise ConflictError(
                "Customer still has an outstanding balance",
                details={"customer_id": c.id, "outstanding_balance_cents": c.outstanding_balance_cents},
            )
        for model, label in ((Order, "orders"), (CustomerPayment, "payments")):
            if db.session.query(model.id).filter(model.customer_id == c.id).first() is not None:
                raise ConflictError(
                    f"Customer is referenced by {label}; deactivate it instead",
                    details={"customer_id": c.id},
                )

        db.session.delete(c)

    run_in_transaction(_op, actor_user_id=actor_user_id)


# =============================================================================
# PAYMENTS
# =============================================================================


def record_payment(
    customer_id: int,
    amount_cents: int,
    actor_user_id: int | None,
    *,
    payment_method: str = "cash",
    reference_number: str | None = None,
) -> CustomerPayment:
    """
    Record a payment against the customer's balance.

    Raises InvalidArgumentError if the amount is not a positive integer,
    exceeds the balance, or a non-cash payment has no reference number.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidArgumentError("amount_cents must be a positive integer", details={"amount_cents": amount_cents})
    if payment_method not in PAYMENT_METHODS:
        raise InvalidArgumentError(
            "Unknown payment method",
            details={"payment_method": payment_method, "allowed": list(PAYMENT_METHODS)},
        )
    reference = (reference_number or "").strip() or None
    if payment_method in REFERENCE_REQUIRED_METHODS and not reference:
        raise InvalidArgumentError(
            f"reference_number is required for {payment_method} payments",
            details={"payment_method": payment_method},
        )

    def _op():
        permission_service.get_actor(actor_user_id)
        customer = lock_customer(customer_id)

        before = customer.outstanding_balance_cents
        if amount_cents > before:
            raise InvalidArgumentError(
                "Payment exceeds the outstanding balance",
                details={"customer_id": customer.id, "amount_cents": amount_cents, "outstanding_balance_cents": before},
            )
        customer.outstanding_balance_cents = before - amount_cents

        payment = CustomerPayment(
            customer_id=customer.id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            reference_number=reference,
            balance_before_cents=before,
            balance_after_cents=customer.outstanding_balance_cents,
            actor_user_id=actor_user_id,
        )
        db.session.add(payment)
        db.session.flush()
        return payment

    return run_in_transaction(_op, actor_user_id=actor_user_id, privileged=True)


def list_payments(customer_id: int, *, limit: int = 200) -> list[CustomerPayment]:
    """Newest first."""
    get_customer(customer_id)
    limit = max(1, min(int(limit), 1000))
    return (
        db.session.query(CustomerPayment)
        .filter(CustomerPayment.customer_id == customer_id)
        .order_by(CustomerPayment.id.desc())
        .limit(limit)
        .all()
    )
