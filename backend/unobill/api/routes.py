from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from unobill.api.validators import (
    ApiValidationError,
    parse_expense_payload,
    parse_member_name,
    parse_settlement_mode,
)
from unobill.domain.models import ModelValidationError
from unobill.domain.report import payment_instructions, payment_message, summarize_bill
from unobill.domain.settlement import classify_balances, settle
from unobill.domain.state import (
    StateError,
    StateStore,
    add_expense,
    add_member,
    clear_all,
    delete_expense,
    find_bill,
    find_expense,
    settle_up,
    view_bill,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

STORE_EXTENSION = "unobill.store"


def _json_error(message: str, *, status: int = 400, code: str = "bad_request"):
    return jsonify({"error": {"code": code, "message": message}}), status


def _store() -> StateStore:
    return current_app.extensions[STORE_EXTENSION]


def _json_body() -> object:
    return request.get_json(silent=True)


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok"}), 200


@api_bp.get("/members")
def list_members():
    state = _store().state
    return jsonify({"members": list(state.members), "custom_members": list(state.custom_members)}), 200


@api_bp.post("/members")
def create_member():
    data = _json_body()
    if not isinstance(data, dict):
        return _json_error("Request body must be JSON.", status=400)

    try:
        name = parse_member_name(data.get("name"))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    store = _store()
    created = name not in store.state.members
    state = store.update(add_member(store.state, name))
    return jsonify({"name": name, "created": created, "members": list(state.members)}), 201 if created else 200


@api_bp.get("/expenses")
def list_expenses():
    expenses = _store().state.expenses
    return jsonify(
        {
            "expenses": [e.to_dict() for e in expenses],
            "total_amount": sum(e.amount for e in expenses),
        }
    ), 200


@api_bp.post("/expenses")
def create_expense():
    data = _json_body()
    if data is None:
        return _json_error("Request body must be JSON.", status=400)

    store = _store()
    try:
        expense = parse_expense_payload(data, store.state.members)
        new_state = add_expense(store.state, expense)
    except (ApiValidationError, ModelValidationError) as e:
        return _json_error(str(e), status=400)
    except StateError as e:
        return _json_error(str(e), status=409, code="conflict")

    store.update(new_state)
    return jsonify(expense.to_dict()), 201


@api_bp.delete("/expenses/<expense_id>")
def remove_expense(expense_id: str):
    store = _store()
    if find_expense(store.state, expense_id) is None:
        return _json_error(f"Unknown expense id: {expense_id}", status=404, code="not_found")

    store.update(delete_expense(store.state, expense_id))
    return jsonify({"deleted": expense_id}), 200


@api_bp.get("/balances")
def preview_balances():
    """
    Pre-settlement preview of the active expenses. Nothing is archived.
    """
    try:
        mode = parse_settlement_mode(request.args.get("mode"), current_app.config.get("SETTLEMENT_MODE", "hub"))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    state = _store().state
    result = settle(state.members, state.expenses, mode)
    debtors, creditors = classify_balances(result.balances)
    return jsonify(
        {
            "balances": result.balances,
            "debtors": [{"member": d.member, "amount": d.amount} for d in debtors],
            "creditors": [{"member": c.member, "amount": c.amount} for c in creditors],
            "main_creditor": result.main_creditor,
            "transactions": [t.to_dict() for t in result.transactions],
            "already_settled": result.already_settled,
        }
    ), 200


@api_bp.post("/settle")
def settle_endpoint():
    data = _json_body()
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return _json_error("Request body must be a JSON object.", status=400)

    try:
        mode = parse_settlement_mode(data.get("mode"), current_app.config.get("SETTLEMENT_MODE", "hub"))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    store = _store()
    if not store.state.expenses:
        return _json_error("There are no expenses to settle.", status=409, code="no_active_expenses")

    new_state, bill = settle_up(store.state, mode=mode)
    store.update(new_state)
    logger.info(
        "settled %d expenses into %s with %d transactions (mode=%s)",
        len(bill.expenses), bill.id, len(bill.transactions), mode.value,
    )
    return jsonify({"bill": bill.to_dict(), "already_settled": bill.already_settled}), 201


@api_bp.get("/bills")
def list_bills():
    state = _store().state
    return jsonify(
        {
            "bills": [b.to_dict() for b in state.settled_bills],
            "active_bill_id": state.active_bill_id,
        }
    ), 200


@api_bp.get("/bills/<bill_id>")
def bill_detail(bill_id: str):
    state = _store().state
    bill = find_bill(state, bill_id)
    if bill is None:
        return _json_error(f"Unknown settled bill: {bill_id}", status=404, code="not_found")

    summaries = summarize_bill(bill, state.members)
    instructions = []
    for summary in summaries:
        member_instructions = payment_instructions(bill, summary.member)
        payload = member_instructions.to_dict()
        payload["message"] = payment_message(member_instructions)
        instructions.append(payload)

    return jsonify(
        {
            "bill": bill.to_dict(),
            "already_settled": bill.already_settled,
            "summary": [s.to_dict() for s in summaries],
            "instructions": instructions,
        }
    ), 200


@api_bp.put("/bills/active")
def set_active_bill():
    """
    Body: {"bill_id": str | null}. null closes the bill view.
    """
    data = _json_body()
    if not isinstance(data, dict) or "bill_id" not in data:
        return _json_error("Request body must include 'bill_id'.", status=400)

    bill_id = data["bill_id"]
    if bill_id is not None and not isinstance(bill_id, str):
        return _json_error("'bill_id' must be a string or null.", status=400)

    store = _store()
    try:
        state = store.update(view_bill(store.state, bill_id))
    except StateError as e:
        return _json_error(str(e), status=404, code="not_found")
    return jsonify({"active_bill_id": state.active_bill_id}), 200


@api_bp.delete("/data")
def clear_data():
    store = _store()
    store.update(clear_all(store.state))
    logger.info("cleared expenses, settlement history and custom members")
    return jsonify({"status": "cleared"}), 200
