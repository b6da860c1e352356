# Overview: Atomic per-storefront claim number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ClaimSequence
from .concurrency import run_with_retry
from warranty.errors import ValidationError
from warranty.time_utils import utcnow


CLAIM_NUMBER_PAD = 6


def format_claim_number(claim_date, sequence: int, pad: int = CLAIM_NUMBER_PAD) -> str:
    return f"CLM-{claim_date:%Y%m%d}-{sequence:0{pad}d}"


def _current(storefront_id: int) -> int:
    return (
        db.session.query(ClaimSequence.next_number)
        .filter_by(storefront_id=storefront_id)
        .scalar()
    )


def next_claim_number(*, storefront_id: int, now=None) -> str:
    """
    Allocate the next claim number for a storefront: CLM-<yyyymmdd>-<seq>.

    The sequence is monotonically increasing within one storefront and never
    resets. Flushes but does not commit; the caller's transaction owns it.
    """
    if not storefront_id:
        raise ValidationError("storefront_id is required", field="storefront_id")
    claim_date = now or utcnow()

    def _op() -> str:
        stmt = (
            update(ClaimSequence)
            .where(ClaimSequence.storefront_id == storefront_id)
            .values(next_number=ClaimSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            next_num = _current(storefront_id) - 1
        else:
            seq = ClaimSequence(storefront_id=storefront_id, next_number=2)
            db.session.add(seq)
            try:
                db.session.flush()
                next_num = 1
            except IntegrityError:
                db.session.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                next_num = _current(storefront_id) - 1

        return format_claim_number(claim_date, next_num)

    return run_with_retry(_op)
