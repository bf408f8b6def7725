# Overview: Customer lookup/creation consumed by credit sales.

from __future__ import annotations

from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_STATUS_ACTIVE
from .errors import MissingCustomerForCreditError


def get_customer(customer_id: int) -> Customer | None:
    return db.session.get(Customer, customer_id)


def find_or_create_customer(data: dict) -> Customer:
    """
    Resolve an ACTIVO customer by id_number, creating it on first credit sale.

    An existing row with the same id_number (even INACTIVO) is refreshed with
    the submitted data and reactivated. Flushes, never commits.
    """
    full_name = (data.get("full_name") or "").strip()
    id_number = (data.get("id_number") or "").strip()
    if not full_name or not id_number:
        raise MissingCustomerForCreditError(
            "Credit sales require the customer's full_name and id_number",
            details={"customer": {"full_name": full_name, "id_number": id_number}},
        )

    customer = Customer.query.filter_by(id_number=id_number).first()
    if customer is not None and customer.status == CUSTOMER_STATUS_ACTIVE:
        return customer

    if customer is None:
        customer = Customer(id_number=id_number)
        db.session.add(customer)

    customer.full_name = full_name
    customer.phone = data.get("phone") or None
    customer.institution = data.get("institution") or None
    customer.status = CUSTOMER_STATUS_ACTIVE
    db.session.flush()
    return customer


def resolve_customer_ref(customer_ref) -> Customer:
    """customer_ref is an existing customer id or a dict of customer data."""
    if isinstance(customer_ref, dict):
        return find_or_create_customer(customer_ref)

    if isinstance(customer_ref, bool) or not isinstance(customer_ref, int):
        raise MissingCustomerForCreditError(details={"customer_ref": customer_ref})

    customer = get_customer(customer_ref)
    if customer is None:
        raise MissingCustomerForCreditError(
            f"Customer {customer_ref} not found",
            details={"customer_id": customer_ref},
        )
    return customer
