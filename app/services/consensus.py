"""
Vote-based consensus for vendor final decisions.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.core.security import get_role_value
from app.db.models import Vendor, VendorVote, User, FinalDecision, RfiStatus, VoteValue

logger = get_logger(__name__)

QUORUM = 3
ACCEPT_THRESHOLD = 0.5


def _value(vote) -> str:
    return vote.value if hasattr(vote, "value") else vote


@dataclass(frozen=True)
class VoteTally:
    total: int
    accept: int
    reject: int

    @property
    def accept_ratio(self) -> float:
        return self.accept / self.total if self.total else 0.0


def tally(votes: Iterable[str]) -> VoteTally:
    values = [_value(v) for v in votes]
    accept = sum(1 for v in values if v == VoteValue.ACCEPT.value)
    reject = sum(1 for v in values if v == VoteValue.REJECT.value)
    return VoteTally(total=len(values), accept=accept, reject=reject)


def decide(result: VoteTally) -> Optional[FinalDecision]:
    """
    Final decision for a tally, or None below quorum.

    A strict majority is required to accept: an exact 50% split rejects.
    """
    if result.total < QUORUM:
        return None
    if result.accept_ratio > ACCEPT_THRESHOLD:
        return FinalDecision.ACCEPTED
    return FinalDecision.REJECTED


def _lock_vendor(db: Session, vendor_id: int) -> Vendor:
    # Row lock serializes concurrent recomputes on Postgres; no-op on SQLite
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).with_for_update().first()
    if vendor is None:
        raise NotFoundError("Vendor not found", {"vendor_id": vendor_id})
    return vendor


def apply_consensus(db: Session, vendor: Vendor) -> VoteTally:
    """Recompute the tally for a vendor and update its decision and RFI status."""
    rows = db.query(VendorVote.vote).filter(VendorVote.vendor_id == vendor.id).all()
    result = tally(row[0] for row in rows)
    decision = decide(result)

    if decision is not None:
        vendor.final_decision = decision.value
        vendor.rfi_status = RfiStatus.COMPLETED.value
    else:
        vendor.final_decision = None
        vendor.rfi_status = RfiStatus.IN_PROGRESS.value

    logger.info(
        f"Vendor {vendor.id} tally {result.accept}/{result.total} accept -> "
        f"{decision.value if decision else 'pending'}",
        extra={"vendor_id": vendor.id, "action": "recompute_consensus"},
    )
    return result


def cast_vote(db: Session, vendor_id: int, user_id: int, vote: VoteValue) -> VendorVote:
    """Upsert the user's vote and recompute the vendor decision in one transaction."""
    vendor = _lock_vendor(db, vendor_id)

    vendor_vote = db.query(VendorVote).filter(
        VendorVote.vendor_id == vendor_id,
        VendorVote.user_id == user_id,
    ).first()

    if vendor_vote is None:
        vendor_vote = VendorVote(vendor_id=vendor_id, user_id=user_id, vote=vote.value)
        db.add(vendor_vote)
    else:
        vendor_vote.vote = vote.value

    db.flush()
    apply_consensus(db, vendor)
    db.commit()
    db.refresh(vendor_vote)
    return vendor_vote


def clear_vote(db: Session, vendor_id: int, user_id: int) -> VoteTally:
    """Remove the user's vote and recompute the vendor decision."""
    vendor = _lock_vendor(db, vendor_id)

    deleted = db.query(VendorVote).filter(
        VendorVote.vendor_id == vendor_id,
        VendorVote.user_id == user_id,
    ).delete(synchronize_session=False)

    if not deleted:
        db.rollback()
        raise NotFoundError("No vote to clear", {"vendor_id": vendor_id})

    result = apply_consensus(db, vendor)
    db.commit()
    return result


def vote_stats(db: Session, vendor_id: int, user_id: int) -> dict:
    """Aggregate vote statistics, the caller's own vote and the voter list."""
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found", {"vendor_id": vendor_id})

    rows = (
        db.query(VendorVote, User)
        .join(User, User.id == VendorVote.user_id)
        .filter(VendorVote.vendor_id == vendor_id)
        .order_by(VendorVote.created_at)
        .all()
    )
    result = tally(vote.vote for vote, _ in rows)
    own_vote: Optional[str] = next((vote.vote for vote, _ in rows if vote.user_id == user_id), None)
    voters: List[dict] = [
        {"name": user.name, "role": get_role_value(user.role), "vote": _value(vote.vote)}
        for vote, user in rows
    ]

    return {
        "total_votes": result.total,
        "accept_votes": result.accept,
        "reject_votes": result.reject,
        "user_vote": _value(own_vote) if own_vote else None,
        "final_decision": vendor.final_decision,
        "voters": voters,
    }
