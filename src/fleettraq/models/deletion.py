"""Account session and deletion request models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleettraq.models._base import FleetRecord, IsoTimestamp, utcnow


class DeletionApproval(BaseModel):
    """One device's vote on a pending deletion."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    device_id: str = Field(min_length=1)
    approved: bool = False


class DeletionRequest(FleetRecord):
    """Pending account deletion (``deletionRequests`` collection).

    At most one live request per account. The store does not enforce
    this; :class:`~fleettraq.deletion.DeletionCoordinator` does.
    """

    account_id: str = Field(min_length=1)
    initiated_by: str = Field(min_length=1)
    initiated_at: IsoTimestamp = Field(default_factory=utcnow)
    approvals: tuple[DeletionApproval, ...] = ()

    def approval_for(self, device_id: str) -> DeletionApproval | None:
        for approval in self.approvals:
            if approval.device_id == device_id:
                return approval
        return None

    def with_approval(self, device_id: str, approved: bool = True) -> DeletionRequest:
        """Return a copy with *device_id*'s entry upserted."""
        updated = [a for a in self.approvals if a.device_id != device_id]
        updated.append(DeletionApproval(device_id=device_id, approved=approved))
        return self.model_copy(update={"approvals": tuple(updated)})


class AccountSession(FleetRecord):
    """One account x device registration (``sessions`` collection).

    The set of sessions for an account is the quorum denominator for
    account deletion. Sessions are never expired automatically.
    """

    account_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    last_active: IsoTimestamp = Field(default_factory=utcnow)
    approved_deletion: bool = False
