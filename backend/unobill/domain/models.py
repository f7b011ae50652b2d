# backend/unobill/domain/models.py
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from unobill.domain.money import SPLIT_SUM_EPSILON, sums_to

# Members are identified by their display name.
Member = str


class ModelValidationError(ValueError):
    """Raised when domain models fail basic validation."""


class SplitMethod(Enum):
    EVENLY = "EVENLY"
    MANUALLY = "MANUALLY"

    @classmethod
    def parse(cls, value: object) -> "SplitMethod":
        if isinstance(value, SplitMethod):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ModelValidationError(f"unknown split method: {value!r}")


def normalize_member(name: object) -> Member:
    if not isinstance(name, str) or not name.strip():
        raise ModelValidationError("member name must be a non-empty string")
    return name.strip()


def _require_number(value: object, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelValidationError(f"{label} must be a number")
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        raise ModelValidationError(f"{label} must be finite")
    return number


def _require_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ModelValidationError(f"{label} must be a non-empty string")
    return value


@dataclass(frozen=True)
class Expense:
    """
    One recorded cost, fronted by `payer` and shared by `participants`.

    participants keeps the order it was entered in. manual_splits is only
    present for MANUALLY split expenses and maps participant -> owed share;
    participants without an entry owe nothing.
    """
    id: str
    payer: Member
    participants: Tuple[Member, ...]
    amount: float
    item_name: str
    split_method: SplitMethod = SplitMethod.EVENLY
    manual_splits: Optional[Mapping[Member, float]] = None

    def __post_init__(self) -> None:
        _require_str(self.id, "Expense.id")
        _require_str(self.payer, "Expense.payer")
        _require_str(self.item_name, "Expense.item_name")

        if isinstance(self.participants, str) or not isinstance(self.participants, (list, tuple)):
            raise ModelValidationError("Expense.participants must be a sequence")
        if not self.participants:
            raise ModelValidationError("Expense.participants must contain at least 1 member")
        for p in self.participants:
            _require_str(p, "Expense.participants entries")
        if len(set(self.participants)) != len(self.participants):
            raise ModelValidationError("Expense.participants must be unique")
        object.__setattr__(self, "participants", tuple(self.participants))

        amount = _require_number(self.amount, "Expense.amount")
        if amount <= 0:
            raise ModelValidationError("Expense.amount must be > 0")
        object.__setattr__(self, "amount", amount)

        if not isinstance(self.split_method, SplitMethod):
            raise ModelValidationError("Expense.split_method must be a SplitMethod")

        if self.split_method is SplitMethod.EVENLY:
            if self.manual_splits:
                raise ModelValidationError("manual_splits is only allowed for MANUALLY split expenses")
            object.__setattr__(self, "manual_splits", None)
            return

        if not isinstance(self.manual_splits, Mapping):
            raise ModelValidationError("manual_splits must be a mapping for MANUALLY split expenses")

        splits: Dict[Member, float] = {}
        for member, share in self.manual_splits.items():
            if member not in self.participants:
                raise ModelValidationError(f"manual split references non-participant: {member}")
            share = _require_number(share, f"manual split for {member}")
            if share < 0:
                raise ModelValidationError(f"manual split for {member} must be >= 0")
            splits[member] = share

        if not sums_to(splits.values(), amount, epsilon=SPLIT_SUM_EPSILON):
            raise ModelValidationError("manual splits must add up to the expense amount")

        object.__setattr__(self, "manual_splits", MappingProxyType(splits))

    def share_of(self, member: Member) -> float:
        """
        The part of this expense owed by `member` (0 for non-participants).
        """
        if member not in self.participants:
            return 0.0
        if self.split_method is SplitMethod.EVENLY:
            return self.amount / len(self.participants)
        return self.manual_splits.get(member, 0.0)

    def __hash__(self) -> int:
        # the generated hash would fail on the manual_splits mapping proxy
        splits = tuple(sorted(self.manual_splits.items())) if self.manual_splits is not None else None
        return hash((self.id, self.payer, self.participants, self.amount, self.item_name, self.split_method, splits))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "payer": self.payer,
            "participants": list(self.participants),
            "amount": self.amount,
            "item_name": self.item_name,
            "split_method": self.split_method.value,
        }
        if self.manual_splits is not None:
            data["manual_splits"] = dict(self.manual_splits)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Expense":
        if not isinstance(data, Mapping):
            raise ModelValidationError("expense record must be an object")
        try:
            return cls(
                id=data["id"],
                payer=data["payer"],
                participants=data["participants"],
                amount=data["amount"],
                item_name=data["item_name"],
                split_method=SplitMethod.parse(data.get("split_method", SplitMethod.EVENLY.value)),
                manual_splits=data.get("manual_splits"),
            )
        except KeyError as e:
            raise ModelValidationError(f"expense record is missing field: {e.args[0]}") from e


@dataclass(frozen=True)
class Transaction:
    """
    A directed payment instruction: from_member pays amount to to_member.
    """
    from_member: Member
    to_member: Member
    amount: float

    def __post_init__(self) -> None:
        _require_str(self.from_member, "Transaction.from_member")
        _require_str(self.to_member, "Transaction.to_member")
        if self.from_member == self.to_member:
            raise ModelValidationError("Transaction cannot pay oneself")
        amount = _require_number(self.amount, "Transaction.amount")
        if amount <= 0:
            raise ModelValidationError("Transaction.amount must be > 0")
        object.__setattr__(self, "amount", amount)

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_member, "to": self.to_member, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transaction":
        if not isinstance(data, Mapping):
            raise ModelValidationError("transaction record must be an object")
        try:
            return cls(from_member=data["from"], to_member=data["to"], amount=data["amount"])
        except KeyError as e:
            raise ModelValidationError(f"transaction record is missing field: {e.args[0]}") from e


@dataclass(frozen=True)
class SettledBill:
    """
    Snapshot of one settlement: the expenses that were active, the payments
    that settle them and the member used as settlement hub.

    main_creditor is None when nothing needed settling.
    """
    id: str
    date: str
    expenses: Tuple[Expense, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    main_creditor: Optional[Member] = None

    def __post_init__(self) -> None:
        _require_str(self.id, "SettledBill.id")
        _require_str(self.date, "SettledBill.date")
        if not isinstance(self.expenses, (list, tuple)):
            raise ModelValidationError("SettledBill.expenses must be a sequence")
        if not isinstance(self.transactions, (list, tuple)):
            raise ModelValidationError("SettledBill.transactions must be a sequence")
        object.__setattr__(self, "expenses", tuple(self.expenses))
        object.__setattr__(self, "transactions", tuple(self.transactions))
        if self.main_creditor is not None:
            _require_str(self.main_creditor, "SettledBill.main_creditor")

    @property
    def already_settled(self) -> bool:
        return not self.transactions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "expenses": [e.to_dict() for e in self.expenses],
            "transactions": [t.to_dict() for t in self.transactions],
            "main_creditor": self.main_creditor,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SettledBill":
        if not isinstance(data, Mapping):
            raise ModelValidationError("settled bill record must be an object")
        try:
            expenses = data.get("expenses") or []
            transactions = data.get("transactions") or []
            if not isinstance(expenses, list) or not isinstance(transactions, list):
                raise ModelValidationError("settled bill expenses/transactions must be lists")
            return cls(
                id=data["id"],
                date=data["date"],
                expenses=tuple(Expense.from_dict(e) for e in expenses),
                transactions=tuple(Transaction.from_dict(t) for t in transactions),
                main_creditor=data.get("main_creditor"),
            )
        except KeyError as e:
            raise ModelValidationError(f"settled bill record is missing field: {e.args[0]}") from e


def unique_members(members: Sequence[Member]) -> Tuple[Member, ...]:
    """
    Drop duplicate names, keeping the first occurrence.
    """
    return tuple(dict.fromkeys(members))
