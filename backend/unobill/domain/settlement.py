# backend/unobill/domain/settlement.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from unobill.domain.models import Expense, Member, SettledBill, SplitMethod, Transaction
from unobill.domain.money import BALANCE_EPSILON


def format_bill_date(now: datetime) -> str:
    """vi-VN locale rendering of a timestamp: time first, then an unpadded d/M/yyyy."""
    return f"{now:%H:%M:%S} {now.day}/{now.month}/{now.year}"


class SettlementMode(Enum):
    """
    HUB routes every debt through the main creditor: each debtor makes one
    payment. MINIMAL matches debtors to creditors greedily and usually needs
    fewer payments, but a debtor may have to pay several people.
    """
    HUB = "hub"
    MINIMAL = "minimal"

    @classmethod
    def parse(cls, value: object) -> "SettlementMode":
        if isinstance(value, SettlementMode):
            return value
        if isinstance(value, str):
            for mode in cls:
                if mode.value == value.strip().lower():
                    return mode
        raise ValueError(f"unknown settlement mode: {value!r}")


@dataclass(frozen=True)
class Position:
    """
    A member with a non-settled balance. amount is always positive.
    """
    member: Member
    amount: float


@dataclass(frozen=True)
class SettlementResult:
    transactions: Tuple[Transaction, ...]
    main_creditor: Optional[Member]
    balances: Dict[Member, float]

    @property
    def already_settled(self) -> bool:
        return not self.transactions


def compute_balances(members: Sequence[Member], expenses: Iterable[Expense]) -> Dict[Member, float]:
    """
    Net balance per member: what they paid minus what they owe.

    Positive means the others owe this member, negative means this member owes.
    Every roster member is present (0.0 when inactive). Members only seen in
    expenses are appended in first-seen order.
    """
    balances: Dict[Member, float] = {m: 0.0 for m in members}

    for expense in expenses:
        balances[expense.payer] = balances.get(expense.payer, 0.0) + expense.amount

        if expense.split_method is SplitMethod.EVENLY:
            share = expense.amount / len(expense.participants)
            for p in expense.participants:
                balances[p] = balances.get(p, 0.0) - share
        else:
            splits = expense.manual_splits or {}
            for p in expense.participants:
                balances[p] = balances.get(p, 0.0) - splits.get(p, 0.0)

    return balances


def classify_balances(balances: Dict[Member, float]) -> Tuple[List[Position], List[Position]]:
    """
    Split balances into (debtors, creditors), both in balance-map order.

    Balances within BALANCE_EPSILON of zero belong to neither side.
    """
    debtors = [Position(m, -b) for m, b in balances.items() if b < -BALANCE_EPSILON]
    creditors = [Position(m, b) for m, b in balances.items() if b > BALANCE_EPSILON]
    return debtors, creditors


def select_main_creditor(creditors: Sequence[Position]) -> Optional[Position]:
    """
    The creditor with the largest balance. sorted() is stable, so on a tie
    the member that comes first in roster order wins.
    """
    if not creditors:
        return None
    return sorted(creditors, key=lambda c: c.amount, reverse=True)[0]


def _hub_transactions(
    debtors: Sequence[Position], creditors: Sequence[Position], hub: Position
) -> List[Transaction]:
    transactions = [Transaction(d.member, hub.member, d.amount) for d in debtors]
    transactions.extend(
        Transaction(hub.member, c.member, c.amount)
        for c in creditors
        if c.member != hub.member
    )
    return transactions


def _minimal_transactions(debtors: Sequence[Position], creditors: Sequence[Position]) -> List[Transaction]:
    # Largest debt against largest credit until one side runs out.
    owing = [[d.member, d.amount] for d in sorted(debtors, key=lambda d: d.amount, reverse=True)]
    owed = [[c.member, c.amount] for c in sorted(creditors, key=lambda c: c.amount, reverse=True)]

    transactions: List[Transaction] = []
    i = j = 0
    while i < len(owing) and j < len(owed):
        amount = min(owing[i][1], owed[j][1])
        if amount > BALANCE_EPSILON:
            transactions.append(Transaction(owing[i][0], owed[j][0], amount))

        owing[i][1] -= amount
        owed[j][1] -= amount

        if owing[i][1] <= BALANCE_EPSILON:
            i += 1
        if owed[j][1] <= BALANCE_EPSILON:
            j += 1

    return transactions


def settle(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    mode: SettlementMode = SettlementMode.HUB,
) -> SettlementResult:
    """
    Turn the balances of `expenses` into payments that zero them out.

    HUB mode (default): every debtor pays its full debt to the main creditor,
    then the main creditor pays each other creditor its full balance, giving
    |debtors| + |creditors| - 1 payments. Not the minimum count, but each
    debtor has exactly one payee.

    With no debtors or no creditors there is nothing to settle: no payments
    and no main creditor.
    """
    balances = compute_balances(members, expenses)
    debtors, creditors = classify_balances(balances)

    if not debtors or not creditors:
        return SettlementResult(transactions=(), main_creditor=None, balances=balances)

    hub = select_main_creditor(creditors)

    if mode is SettlementMode.MINIMAL:
        transactions = _minimal_transactions(debtors, creditors)
    else:
        transactions = _hub_transactions(debtors, creditors, hub)

    return SettlementResult(
        transactions=tuple(transactions),
        main_creditor=hub.member,
        balances=balances,
    )


def new_bill_id(now: datetime) -> str:
    return f"settled-{int(now.timestamp() * 1000)}"


def build_settled_bill(
    members: Sequence[Member],
    expenses: Sequence[Expense],
    *,
    mode: SettlementMode = SettlementMode.HUB,
    now: Optional[datetime] = None,
    id_factory: Callable[[datetime], str] = new_bill_id,
) -> SettledBill:
    """
    Settle `expenses` and wrap the outcome in a SettledBill.

    The bill keeps its own tuple of the (immutable) expenses, so clearing the
    caller's active list later leaves it untouched.
    """
    now = now or datetime.now()
    result = settle(members, expenses, mode)
    return SettledBill(
        id=id_factory(now),
        date=format_bill_date(now),
        expenses=tuple(expenses),
        transactions=result.transactions,
        main_creditor=result.main_creditor,
    )


def apply_transactions(balances: Dict[Member, float], transactions: Iterable[Transaction]) -> Dict[Member, float]:
    """
    Balances after every payment is made. A payer's balance rises by the
    amount, the payee's drops. Returns a new dict.
    """
    after = dict(balances)
    for t in transactions:
        after[t.from_member] = after.get(t.from_member, 0.0) + t.amount
        after[t.to_member] = after.get(t.to_member, 0.0) - t.amount
    return after
