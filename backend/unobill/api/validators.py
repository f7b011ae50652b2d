from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from unobill.domain.models import Expense, Member, ModelValidationError, SplitMethod
from unobill.domain.money import MoneyError, SPLIT_SUM_EPSILON, parse_amount, sums_to
from unobill.domain.settlement import SettlementMode


class ApiValidationError(ValueError):
    """Raised when request payload validation fails."""


def new_expense_id() -> str:
    return f"exp-{uuid4().hex}"


def parse_member_name(raw_name: object) -> Member:
    if not isinstance(raw_name, str) or not raw_name.strip():
        raise ApiValidationError("'name' must be a non-empty string.")
    return raw_name.strip()


def _parse_known_member(raw: object, members: Sequence[Member], label: str) -> Member:
    if not isinstance(raw, str) or not raw.strip():
        raise ApiValidationError(f"'{label}' must be a non-empty member name.")
    name = raw.strip()
    if name not in members:
        raise ApiValidationError(f"Unknown member: {name}")
    return name


def _parse_participants(raw_participants: object, members: Sequence[Member]) -> List[Member]:
    if not isinstance(raw_participants, list) or not raw_participants:
        raise ApiValidationError("'participants' must be a non-empty list of member names.")

    participants: List[Member] = []
    for raw in raw_participants:
        name = _parse_known_member(raw, members, "participants")
        if name in participants:
            raise ApiValidationError("Participants must be unique.")
        participants.append(name)
    return participants


def _parse_manual_splits(raw_splits: object, participants: Sequence[Member], amount: float) -> Dict[Member, float]:
    if not isinstance(raw_splits, dict) or not raw_splits:
        raise ApiValidationError("'manual_splits' must be an object mapping member -> share.")

    splits: Dict[Member, float] = {}
    for member, share in raw_splits.items():
        if member not in participants:
            raise ApiValidationError(f"Manual split for non-participant: {member}")
        if isinstance(share, bool) or not isinstance(share, (int, float)) or share < 0:
            raise ApiValidationError(f"Manual split for {member} must be a number >= 0.")
        splits[member] = float(share)

    if not sums_to(splits.values(), amount, epsilon=SPLIT_SUM_EPSILON):
        raise ApiValidationError("Manual splits must add up to the expense amount.")
    return splits


def parse_expense_payload(
    data: object,
    members: Sequence[Member],
    *,
    id_factory: Callable[[], str] = new_expense_id,
) -> Expense:
    """
    Validate an expense-capture payload against the roster:

      {"payer": str, "participants": [str, ...], "amount": number | str,
       "item_name": str, "split_method": "EVENLY" | "MANUALLY",
       "manual_splits": {member: number}}   # MANUALLY only
    """
    if not isinstance(data, dict):
        raise ApiValidationError("Request body must be a JSON object.")

    payer = _parse_known_member(data.get("payer"), members, "payer")
    participants = _parse_participants(data.get("participants"), members)

    try:
        amount = parse_amount(data.get("amount"))
    except MoneyError as e:
        raise ApiValidationError(f"Invalid 'amount': {e}") from e

    item_name = data.get("item_name")
    if not isinstance(item_name, str) or not item_name.strip():
        raise ApiValidationError("'item_name' must be a non-empty string.")

    try:
        split_method = SplitMethod.parse(data.get("split_method", SplitMethod.EVENLY.value))
    except ModelValidationError as e:
        raise ApiValidationError(str(e)) from e

    manual_splits: Optional[Dict[Member, float]] = None
    if split_method is SplitMethod.MANUALLY:
        manual_splits = _parse_manual_splits(data.get("manual_splits"), participants, amount)

    try:
        return Expense(
            id=id_factory(),
            payer=payer,
            participants=tuple(participants),
            amount=amount,
            item_name=item_name.strip(),
            split_method=split_method,
            manual_splits=manual_splits,
        )
    except ModelValidationError as e:
        raise ApiValidationError(str(e)) from e


def parse_settlement_mode(raw_mode: object, default: str = SettlementMode.HUB.value) -> SettlementMode:
    try:
        return SettlementMode.parse(default if raw_mode is None else raw_mode)
    except ValueError as e:
        raise ApiValidationError("'mode' must be 'hub' or 'minimal'.") from e
