# backend/unobill/domain/state.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from unobill.domain.models import (
    Expense,
    Member,
    ModelValidationError,
    SettledBill,
    normalize_member,
    unique_members,
)
from unobill.domain.settlement import SettlementMode, build_settled_bill

logger = logging.getLogger(__name__)


class StateError(ValueError):
    """Raised when a state transition is not applicable."""


@dataclass(frozen=True)
class AppState:
    """
    Everything the app holds in memory. Transitions below never mutate a
    state; they return a new one.

    settled_bills is newest first. active_bill_id points at the bill being
    viewed, if any.
    """
    default_members: Tuple[Member, ...] = ()
    members: Tuple[Member, ...] = ()
    expenses: Tuple[Expense, ...] = ()
    settled_bills: Tuple[SettledBill, ...] = ()
    active_bill_id: Optional[str] = None

    @property
    def custom_members(self) -> Tuple[Member, ...]:
        return tuple(m for m in self.members if m not in self.default_members)

    @property
    def active_bill(self) -> Optional[SettledBill]:
        if self.active_bill_id is None:
            return None
        return find_bill(self, self.active_bill_id)


def initial_state(
    default_members: Sequence[Member],
    *,
    stored_members: Sequence[Member] = (),
    expenses: Sequence[Expense] = (),
    settled_bills: Sequence[SettledBill] = (),
) -> AppState:
    """
    Build the starting state: default roster first, then stored custom
    members that are not already in it.
    """
    defaults = unique_members([normalize_member(m) for m in default_members])
    members = unique_members(list(defaults) + [normalize_member(m) for m in stored_members])
    return AppState(
        default_members=defaults,
        members=members,
        expenses=tuple(expenses),
        settled_bills=tuple(settled_bills),
    )


def add_member(state: AppState, name: object) -> AppState:
    member = normalize_member(name)
    if member in state.members:
        return state
    return replace(state, members=state.members + (member,))


def find_expense(state: AppState, expense_id: str) -> Optional[Expense]:
    for expense in state.expenses:
        if expense.id == expense_id:
            return expense
    return None


def add_expense(state: AppState, expense: Expense) -> AppState:
    if find_expense(state, expense.id) is not None:
        raise StateError(f"duplicate expense id: {expense.id}")

    unknown = [m for m in (expense.payer, *expense.participants) if m not in state.members]
    if unknown:
        raise ModelValidationError(f"expense references unknown member: {unknown[0]}")

    return replace(state, expenses=state.expenses + (expense,))


def delete_expense(state: AppState, expense_id: str) -> AppState:
    remaining = tuple(e for e in state.expenses if e.id != expense_id)
    if len(remaining) == len(state.expenses):
        return state
    return replace(state, expenses=remaining)


def find_bill(state: AppState, bill_id: str) -> Optional[SettledBill]:
    for bill in state.settled_bills:
        if bill.id == bill_id:
            return bill
    return None


def settle_up(
    state: AppState,
    *,
    mode: SettlementMode = SettlementMode.HUB,
    now: Optional[datetime] = None,
) -> Tuple[AppState, SettledBill]:
    """
    Archive every active expense into a new SettledBill.

    The bill goes to the front of the history and becomes the active bill;
    the active expense list is emptied.
    """
    bill = build_settled_bill(state.members, state.expenses, mode=mode, now=now)
    if find_bill(state, bill.id) is not None:
        # two settlements within the same millisecond
        bill = replace(bill, id=f"{bill.id}-{len(state.settled_bills)}")

    new_state = replace(
        state,
        expenses=(),
        settled_bills=(bill,) + state.settled_bills,
        active_bill_id=bill.id,
    )
    return new_state, bill


def view_bill(state: AppState, bill_id: Optional[str]) -> AppState:
    if bill_id is not None and find_bill(state, bill_id) is None:
        raise StateError(f"unknown settled bill: {bill_id}")
    return replace(state, active_bill_id=bill_id)


def clear_all(state: AppState) -> AppState:
    """
    Forget expenses, history and custom members. The default roster stays.
    """
    return AppState(default_members=state.default_members, members=state.default_members)


Subscriber = Callable[[AppState, AppState], None]


class StateStore:
    """
    Holds the current AppState and tells subscribers about every change.

    Subscribers run after the new state is in place. One that raises is
    logged and skipped; the state is not rolled back.
    """

    def __init__(self, state: AppState):
        self._state = state
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def update(self, new_state: AppState) -> AppState:
        old_state = self._state
        if new_state is old_state:
            return new_state

        self._state = new_state
        for subscriber in self._subscribers:
            try:
                subscriber(old_state, new_state)
            except Exception:
                logger.exception("state subscriber %r failed; keeping in-memory state", subscriber)
        return new_state
