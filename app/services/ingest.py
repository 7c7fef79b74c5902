# app/services/ingest.py
"""
Batch transaction sync and the paginated read path.

Deduplication is left entirely to the (user_id, sms_hash) unique constraint:
every insert is ON CONFLICT DO NOTHING, so concurrent or repeated submissions
of the same SMS converge on one row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List

from pydantic import ValidationError
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.schemas import TransactionInput
from app.services.errors import ConsentRequiredError, PersistenceError
from app.services.import_helpers import build_transaction_values, clamp_page
from models import Transaction, User

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    inserted: int = 0
    skipped: int = 0  # duplicates + failed
    failed: int = 0   # malformed or rejected by the database
    total: int = 0


def _insert_ignoring_duplicates(db: Session, values: dict):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Transaction).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(Transaction).values(**values)
    else:
        raise PersistenceError(f"unsupported database dialect: {dialect}")
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "sms_hash"])
    return db.execute(stmt)


def require_consent(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None or not user.consent_given:
        raise ConsentRequiredError("User consent required before syncing data")
    return user


def sync_transactions(db: Session, user_id: str, candidates: Iterable[Any]) -> SyncResult:
    """
    Store a batch of candidate transactions for one user.

    Each item runs in its own SAVEPOINT so a bad row only loses itself;
    the batch as a whole is committed once. If that commit fails nothing
    from the batch persists and PersistenceError is raised.
    """
    require_consent(db, user_id)

    items: List[Any] = list(candidates)
    result = SyncResult(total=len(items))

    try:
        for i, raw in enumerate(items):
            try:
                tx = raw if isinstance(raw, TransactionInput) else TransactionInput.model_validate(raw)
            except ValidationError as e:
                result.skipped += 1
                result.failed += 1
                logger.warning("sync user=%s item #%d malformed: %s", user_id, i, e.errors()[:1])
                continue

            try:
                values = build_transaction_values(user_id, tx)
            except (OverflowError, OSError, ValueError) as e:
                result.skipped += 1
                result.failed += 1
                logger.warning("sync user=%s item #%d not convertible: %s", user_id, i, e)
                continue

            try:
                with db.begin_nested():
                    res = _insert_ignoring_duplicates(db, values)
            # the sqlite driver raises OverflowError itself for out-of-range integers
            except (SQLAlchemyError, OverflowError) as e:
                result.skipped += 1
                result.failed += 1
                logger.warning("sync user=%s item #%d rejected by database: %s", user_id, i, e)
                continue

            if res.rowcount and res.rowcount > 0:
                result.inserted += 1
            else:
                result.skipped += 1  # duplicate

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("sync user=%s commit failed, batch of %d rolled back: %s", user_id, result.total, e)
        raise PersistenceError("Failed to commit transaction") from e

    logger.info(
        "sync user=%s total=%d inserted=%d skipped=%d failed=%d",
        user_id, result.total, result.inserted, result.skipped, result.failed,
    )
    return result


def list_transactions(db: Session, user_id: str, limit: int | None = None, offset: int | None = None):
    """
    Returns (transactions, limit, offset) newest first, with limit/offset
    clamped to the allowed bounds.
    """
    limit, offset = clamp_page(limit, offset)
    rows = (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, limit, offset
