"""
Claim Lifecycle Manager - Ownership Claims and Business Verification
====================================================================

STATE MACHINE:
    pending ──decide(approved)──> approved   (business.claimed_by, verified set)
        └─────decide(rejected)──> rejected   (claim only)

Both outcomes are terminal. A second decide on a decided claim raises
InvalidTransitionError and writes nothing. While pending, the claimant may
edit the proof (update_claim) or withdraw the claim (withdraw); both are
refused once the claim is decided.

ARCHITECTURAL DECISION:
- The decision runs as a callback inside repository.transition_claim(),
  which loads the claim and business and applies both writes atomically.
  Two concurrent decides on one claim are serialized by the backend: the
  loser sees a terminal claim and fails with InvalidTransitionError
- Approving never overrides an existing owner. Other pending claims on
  the same business stay pending for an admin to reject
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from tchouf.domain.errors import (
    ConstraintViolationError,
    InvalidTransitionError,
    NotFoundError,
)
from tchouf.domain.models import Business, Claim, ClaimStatus, ClaimWithData, utcnow
from tchouf.domain.schemas import ClaimDecision, ClaimUpdate, NewClaim
from tchouf.infrastructure.persistence import ClaimTransition, Repository

logger = logging.getLogger(__name__)


def parse_outcome(outcome: Union[str, ClaimStatus]) -> ClaimStatus:
    """Accept "approved"/"rejected" (or the enum); anything else is invalid."""
    try:
        status = ClaimStatus(outcome)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown claim outcome {outcome!r}; expected 'approved' or 'rejected'",
            outcome=str(outcome),
        ) from None
    if not status.is_terminal:
        raise InvalidTransitionError("A claim cannot be decided back to pending", outcome=status.value)
    return status


def _require_open(claim: Claim, user_id: Optional[int], action: str) -> None:
    if user_id is not None and claim.user_id != user_id:
        raise ConstraintViolationError(
            f"Claim {claim.id} belongs to another user", claim_id=claim.id
        )
    if claim.status.is_terminal:
        raise InvalidTransitionError(
            f"Claim {claim.id} is already {claim.status.value} and cannot be {action}",
            claim_id=claim.id,
            status=claim.status.value,
        )


class ClaimLifecycleManager:
    """
    Submits and decides business ownership claims.

    USAGE:
        claims = ClaimLifecycleManager(repository)
        claim = claims.submit(NewClaim(business_id=1, user_id=2, proof_url="..."))
        claim, business = claims.decide(claim.id, "approved", reviewed_by=admin.id)
    """

    def __init__(self, repository: Repository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    # ── Transitions ────────────────────────────────────────────────

    def submit(self, data: NewClaim) -> Claim:
        """Create a pending claim. Unknown business/user or a repeat claim is rejected."""
        claim = self.repository.create_claim(data)
        logger.info(f"Claim {claim.id} submitted by user {claim.user_id} for business {claim.business_id}")
        return claim

    def decide(
        self,
        claim_id: int,
        outcome: Union[str, ClaimStatus],
        reviewed_by: Optional[int] = None,
    ) -> tuple[Claim, Optional[Business]]:
        """
        Move a pending claim to approved or rejected.

        Returns the updated claim and its business (as stored after the
        decision). Raises NotFoundError, InvalidTransitionError or
        ConstraintViolationError; on any error nothing is written.
        """
        status = parse_outcome(outcome)
        decided_at = self.clock()

        def decide(claim: Claim, business: Optional[Business]) -> ClaimTransition:
            if claim.status.is_terminal:
                raise InvalidTransitionError(
                    f"Claim {claim.id} is already {claim.status.value}",
                    claim_id=claim.id,
                    status=claim.status.value,
                )
            claim_fields = {"status": status, "reviewed_at": decided_at, "reviewed_by": reviewed_by}
            if status is ClaimStatus.REJECTED:
                return ClaimTransition(claim_fields)

            if business is None:
                raise ConstraintViolationError(
                    f"Claim {claim.id} references unknown business {claim.business_id}"
                )
            if business.claimed_by is not None and business.claimed_by != claim.user_id:
                raise ConstraintViolationError(
                    f"Business {business.id} is already claimed by user {business.claimed_by}",
                    business_id=business.id,
                )
            return ClaimTransition(
                claim_fields,
                {"claimed_by": claim.user_id, "verified": True},
            )

        claim, business = self.repository.transition_claim(claim_id, decide)
        logger.info(f"Claim {claim.id} {claim.status.value} (business {claim.business_id})")
        return claim, business

    def apply_decision(self, claim_id: int, decision: ClaimDecision) -> tuple[Claim, Optional[Business]]:
        return self.decide(claim_id, decision.status, reviewed_by=decision.reviewed_by)

    def update_claim(
        self, claim_id: int, data: ClaimUpdate, user_id: Optional[int] = None
    ) -> Claim:
        """Edit a pending claim. Passing ``user_id`` restricts the edit to the claimant."""
        updates = data.model_dump(exclude_unset=True)
        if not updates:
            return self.repository.get_claim(claim_id)

        def edit(claim: Claim, business: Optional[Business]) -> ClaimTransition:
            _require_open(claim, user_id, "edited")
            return ClaimTransition(updates)

        claim, _ = self.repository.transition_claim(claim_id, edit)
        return claim

    def withdraw(self, claim_id: int, user_id: Optional[int] = None) -> Claim:
        """Delete a pending claim so the user may submit a new one."""
        claim = self.repository.delete_claim(
            claim_id, check=lambda stored: _require_open(stored, user_id, "withdrawn")
        )
        logger.info(f"Claim {claim.id} withdrawn by user {claim.user_id}")
        return claim

    # ── Queries ────────────────────────────────────────────────────

    def get_claim(self, claim_id: int) -> Claim:
        return self.repository.get_claim(claim_id)

    def claims_for_business(self, business_id: int) -> List[Claim]:
        return self.repository.claims_for_business(business_id)

    def claims_for_user(self, user_id: int) -> List[Claim]:
        return self.repository.claims_for_user(user_id)

    def user_claim_for_business(self, user_id: int, business_id: int) -> Optional[Claim]:
        return self.repository.find_user_claim(user_id, business_id)

    def pending_claims(self) -> List[ClaimWithData]:
        """Pending claims joined with their business and claimant, for the admin queue."""
        pending = []
        for claim in self.repository.pending_claims():
            try:
                business = self.repository.get_business(claim.business_id)
                user = self.repository.get_user(claim.user_id)
            except NotFoundError as e:
                logger.warning(f"Skipping claim {claim.id} in admin queue: {e}")
                continue
            pending.append(ClaimWithData(claim=claim, business=business, user=user))
        return pending
