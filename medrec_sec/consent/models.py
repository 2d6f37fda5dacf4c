"""
Consent data models
Access grant records and the grant state machine
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple
from pydantic import BaseModel, Field

from ..exceptions import InvalidStateTransitionError


class GrantState(str, Enum):
    """Access grant state between one subject and one handler"""
    NONE = "none"            # Implicit default, no record on the ledger
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVOKED = "revoked"


class GrantAction(str, Enum):
    """Actions that move a grant between states"""
    REQUEST = "request"
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"


# action -> (allowed source states, target state)
GRANT_TRANSITIONS: Dict[GrantAction, Tuple[FrozenSet[GrantState], GrantState]] = {
    GrantAction.REQUEST: (
        frozenset({GrantState.NONE, GrantState.REJECTED, GrantState.REVOKED}),
        GrantState.PENDING,
    ),
    GrantAction.APPROVE: (frozenset({GrantState.PENDING}), GrantState.APPROVED),
    GrantAction.REJECT: (frozenset({GrantState.PENDING}), GrantState.REJECTED),
    GrantAction.REVOKE: (frozenset({GrantState.APPROVED}), GrantState.REVOKED),
}


class AccessGrant(BaseModel):
    """Consent relation keyed by (subject, handler)"""
    subject: str = Field(..., description="Subject address")
    handler: str = Field(..., description="Handler address")
    state: GrantState = Field(default=GrantState.NONE)

    # Timestamps of the current cycle
    requested_at: Optional[datetime] = Field(default=None)
    decided_at: Optional[datetime] = Field(default=None)
    revoked_at: Optional[datetime] = Field(default=None)

    # Audit trail
    last_actor: Optional[str] = Field(default=None)
    cycle: int = Field(default=0, description="Number of request cycles so far")

    # Ledger position of the last confirmed event for this pair
    sequence: int = Field(default=0)

    def is_valid(self) -> bool:
        """Check if the grant currently authorizes access"""
        return self.state == GrantState.APPROVED

    def is_open(self) -> bool:
        """Pending or approved: the handler already holds a non-terminal grant"""
        return self.state in (GrantState.PENDING, GrantState.APPROVED)

    def transition(self, action: GrantAction, actor: str) -> "AccessGrant":
        """Return the grant as it would be after action; raises if not allowed"""
        sources, target = GRANT_TRANSITIONS[action]
        if self.state not in sources:
            raise InvalidStateTransitionError(
                transition=action.value,
                current_state=self.state.value,
                expected_states=sorted(s.value for s in sources),
                details={"subject": self.subject, "handler": self.handler},
            )

        now = datetime.now(UTC)
        update = {"state": target, "last_actor": actor}
        if action == GrantAction.REQUEST:
            # A new cycle overwrites the terminal record of the previous one
            update.update(requested_at=now, decided_at=None, revoked_at=None, cycle=self.cycle + 1)
        elif action == GrantAction.REVOKE:
            update["revoked_at"] = now
        else:
            update["decided_at"] = now

        return self.model_copy(update=update)
