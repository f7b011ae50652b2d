# backend/unobill/domain/report.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from unobill.domain.models import Member, SettledBill, Transaction
from unobill.domain.money import BALANCE_EPSILON, format_amount


@dataclass(frozen=True)
class MemberSummary:
    """
    What one member paid and owed across a bill's expenses.
    net > 0 means the member gets money back.
    """
    member: Member
    paid: float
    owes: float

    @property
    def net(self) -> float:
        return self.paid - self.owes

    def to_dict(self) -> Dict[str, object]:
        return {"member": self.member, "paid": self.paid, "owes": self.owes, "net": self.net}


@dataclass(frozen=True)
class ExpenseLine:
    item_name: str
    amount: float


@dataclass(frozen=True)
class PaymentInstructions:
    member: Member
    to_pay: Tuple[Transaction, ...]
    to_receive: Tuple[Transaction, ...]
    expenses_paid: Tuple[ExpenseLine, ...]
    expenses_participated: Tuple[ExpenseLine, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "member": self.member,
            "to_pay": [t.to_dict() for t in self.to_pay],
            "to_receive": [t.to_dict() for t in self.to_receive],
            "expenses_paid": [{"item_name": e.item_name, "amount": e.amount} for e in self.expenses_paid],
            "expenses_participated": [
                {"item_name": e.item_name, "amount": e.amount} for e in self.expenses_participated
            ],
        }


def summarize_bill(bill: SettledBill, members: Sequence[Member]) -> List[MemberSummary]:
    """
    Per-member totals for a bill, in roster order, skipping members who
    neither paid nor owed anything. Members that are no longer on the roster
    come last.
    """
    paid: Dict[Member, float] = {m: 0.0 for m in members}
    owes: Dict[Member, float] = {m: 0.0 for m in members}

    for expense in bill.expenses:
        paid[expense.payer] = paid.get(expense.payer, 0.0) + expense.amount
        owes.setdefault(expense.payer, 0.0)
        for p in expense.participants:
            owes[p] = owes.get(p, 0.0) + expense.share_of(p)
            paid.setdefault(p, 0.0)

    return [
        MemberSummary(member=m, paid=paid[m], owes=owes[m])
        for m in paid
        if paid[m] > BALANCE_EPSILON or owes[m] > BALANCE_EPSILON
    ]


def payment_instructions(bill: SettledBill, member: Member) -> PaymentInstructions:
    return PaymentInstructions(
        member=member,
        to_pay=tuple(t for t in bill.transactions if t.from_member == member),
        to_receive=tuple(t for t in bill.transactions if t.to_member == member),
        expenses_paid=tuple(
            ExpenseLine(e.item_name, e.amount) for e in bill.expenses if e.payer == member
        ),
        expenses_participated=tuple(
            ExpenseLine(e.item_name, e.share_of(member)) for e in bill.expenses if member in e.participants
        ),
    )


def payment_message(instructions: PaymentInstructions) -> str:
    """
    Plain text a member can share: who they pay (or who pays them) followed
    by the expenses they paid for and took part in.
    """
    lines: List[str] = []
    for t in instructions.to_pay:
        lines.append(f"{t.from_member} pays {format_amount(t.amount)} to {t.to_member}")
    for t in instructions.to_receive:
        lines.append(f"{t.to_member} receives {format_amount(t.amount)} from {t.from_member}")
    if not lines:
        lines.append(f"{instructions.member} is already settled")

    if instructions.expenses_paid:
        lines.append("")
        lines.append("Paid:")
        lines.extend(f"- {e.item_name}: {format_amount(e.amount)}" for e in instructions.expenses_paid)

    if instructions.expenses_participated:
        lines.append("")
        lines.append("Shared:")
        lines.extend(f"- {e.item_name}: {format_amount(e.amount)}" for e in instructions.expenses_participated)

    return "\n".join(lines)
