from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Optional, Sequence, Set

try:
    import psycopg
except ImportError:  # pragma: no cover
    psycopg = None

from unobill.domain.models import Expense, Member, ModelValidationError, SettledBill
from unobill.domain.state import AppState, initial_state

logger = logging.getLogger(__name__)

DB_ERRORS = (psycopg.Error,) if psycopg is not None else ()

EXPENSES_KEY = "expenses"
SETTLED_BILLS_KEY = "settled_bills"
MEMBERS_KEY = "members"


class RepositoryError(RuntimeError):
    """Raised when reading or writing persisted records fails."""


class RecordRepository:
    """
    Stores lists of JSON records under logical keys in a single table:

        CREATE TABLE app_records (
            key text PRIMARY KEY,
            payload jsonb NOT NULL,
            updated_at timestamptz NOT NULL DEFAULT now()
        );
    """

    def __init__(self, database_url: str):
        self.database_url = database_url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def _connect(self):
        if not self.enabled:
            raise RepositoryError("DATABASE_URL not configured")
        if psycopg is None:
            raise RepositoryError("psycopg is not installed")
        try:
            return psycopg.connect(self.database_url)
        except DB_ERRORS as e:
            raise RepositoryError(f"could not connect to database: {e}") from e

    def save_records(self, key: str, records: Sequence[Any]) -> None:
        payload = json.dumps(list(records), ensure_ascii=False)
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app_records (key, payload, updated_at)
                    VALUES (%s, %s::jsonb, now())
                    ON CONFLICT (key)
                    DO UPDATE SET payload = EXCLUDED.payload, updated_at = EXCLUDED.updated_at
                    """,
                    (key, payload),
                )
                conn.commit()
        except DB_ERRORS as e:
            raise RepositoryError(f"failed to save {key}: {e}") from e

    def load_records(self, key: str) -> List[Any]:
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT payload::text
                    FROM app_records
                    WHERE key = %s
                    """,
                    (key,),
                )
                row = cur.fetchone()
        except DB_ERRORS as e:
            raise RepositoryError(f"failed to load {key}: {e}") from e

        if row is None:
            return []
        try:
            records = json.loads(row[0])
        except (TypeError, ValueError) as e:
            raise RepositoryError(f"stored {key} is not valid JSON") from e
        if not isinstance(records, list):
            raise RepositoryError(f"stored {key} is not a list")
        return records


def _load_list(repo: RecordRepository, key: str, decode: Callable[[Any], Any]) -> list:
    try:
        return [decode(record) for record in repo.load_records(key)]
    except (RepositoryError, ModelValidationError):
        logger.exception("could not load %s; starting with an empty list", key)
        return []


def _decode_member(record: Any) -> Member:
    if not isinstance(record, str) or not record.strip():
        raise ModelValidationError("stored member must be a non-empty string")
    return record


def load_state(repo: Optional[RecordRepository], default_members: Sequence[Member]) -> AppState:
    """
    Read the persisted lists and merge stored members after the defaults.
    Any list that cannot be read is logged and treated as empty.
    """
    if repo is None or not repo.enabled:
        return initial_state(default_members)

    return initial_state(
        default_members,
        stored_members=_load_list(repo, MEMBERS_KEY, _decode_member),
        expenses=_load_list(repo, EXPENSES_KEY, Expense.from_dict),
        settled_bills=_load_list(repo, SETTLED_BILLS_KEY, SettledBill.from_dict),
    )


def _records_for(state: AppState, key: str) -> list:
    if key == SETTLED_BILLS_KEY:
        return [b.to_dict() for b in state.settled_bills]
    if key == EXPENSES_KEY:
        return [e.to_dict() for e in state.expenses]
    return list(state.custom_members)


class PersistenceSubscriber:
    """
    StateStore subscriber that writes every list that changed between two
    states. Only custom members are stored; the default roster comes from
    configuration.

    Each list is saved on its own. History goes first so a settlement is
    never lost while its expenses are cleared. A list whose save fails is
    logged and written again on the next state change.
    """

    # settled_bills before expenses: a settle moves expenses into a bill
    SAVE_ORDER = (SETTLED_BILLS_KEY, EXPENSES_KEY, MEMBERS_KEY)

    def __init__(self, repo: RecordRepository):
        self.repo = repo
        self.pending: Set[str] = set()

    def __call__(self, old: AppState, new: AppState) -> None:
        if not self.repo.enabled:
            return

        changed = set(self.pending)
        if new.settled_bills != old.settled_bills:
            changed.add(SETTLED_BILLS_KEY)
        if new.expenses != old.expenses:
            changed.add(EXPENSES_KEY)
        if new.custom_members != old.custom_members:
            changed.add(MEMBERS_KEY)

        for key in self.SAVE_ORDER:
            if key not in changed:
                continue
            try:
                self.repo.save_records(key, _records_for(new, key))
            except Exception:
                logger.exception("could not save %s; will retry on the next change", key)
                self.pending.add(key)
            else:
                self.pending.discard(key)
