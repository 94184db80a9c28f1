# castgate/models.py
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Type

from .errors import UpstreamError
from .keys import Keypair
from .logger import logger


class Provider(str, Enum):
    HOSTED_PRE_APPROVED = "neynar_siwn"
    HOSTED_MANAGED = "neynar"
    DIRECT = "direct"


# -----------------------------------------------------------------------------
# Status sets (closed per provider)
# -----------------------------------------------------------------------------
class PreApprovedStatus(str, Enum):
    APPROVED = "approved"
    REVOKED = "revoked"


class ManagedStatus(str, Enum):
    GENERATED = "generated"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REVOKED = "revoked"


class DirectStatus(str, Enum):
    # Farcaster signed key request states
    PENDING = "pending"
    APPROVED = "approved"  # user approved, onchain add not yet confirmed
    COMPLETED = "completed"
    REVOKED = "revoked"


STATUS_TYPES: Dict[Provider, Type[Enum]] = {
    Provider.HOSTED_PRE_APPROVED: PreApprovedStatus,
    Provider.HOSTED_MANAGED: ManagedStatus,
    Provider.DIRECT: DirectStatus,
}

READY_STATUS: Dict[Provider, str] = {
    Provider.HOSTED_PRE_APPROVED: PreApprovedStatus.APPROVED.value,
    Provider.HOSTED_MANAGED: ManagedStatus.APPROVED.value,
    Provider.DIRECT: DirectStatus.COMPLETED.value,
}

# stored statuses that pass the publish gate; the direct flow admits its
# intermediate "approved" state and lets the live check decide
PUBLISHABLE_STATUSES: Dict[Provider, FrozenSet[str]] = {
    Provider.HOSTED_PRE_APPROVED: frozenset({PreApprovedStatus.APPROVED.value}),
    Provider.HOSTED_MANAGED: frozenset({ManagedStatus.APPROVED.value}),
    Provider.DIRECT: frozenset({DirectStatus.APPROVED.value, DirectStatus.COMPLETED.value}),
}

_P, _M, _D = PreApprovedStatus, ManagedStatus, DirectStatus

TRANSITIONS: Dict[Provider, Mapping[str, FrozenSet[str]]] = {
    Provider.HOSTED_PRE_APPROVED: {
        _P.APPROVED: frozenset({_P.APPROVED, _P.REVOKED}),
        _P.REVOKED: frozenset({_P.REVOKED}),
    },
    Provider.HOSTED_MANAGED: {
        _M.GENERATED: frozenset({_M.GENERATED, _M.PENDING_APPROVAL, _M.APPROVED, _M.REVOKED}),
        _M.PENDING_APPROVAL: frozenset({_M.PENDING_APPROVAL, _M.APPROVED, _M.REVOKED}),
        _M.APPROVED: frozenset({_M.APPROVED, _M.REVOKED}),
        _M.REVOKED: frozenset({_M.REVOKED}),
    },
    Provider.DIRECT: {
        _D.PENDING: frozenset({_D.PENDING, _D.APPROVED, _D.COMPLETED, _D.REVOKED}),
        _D.APPROVED: frozenset({_D.APPROVED, _D.COMPLETED, _D.REVOKED}),
        _D.COMPLETED: frozenset({_D.COMPLETED, _D.REVOKED}),
        _D.REVOKED: frozenset({_D.REVOKED}),
    },
}


def parse_status(provider: Provider, raw: Any) -> str:
    """Map an upstream state string onto the provider's closed set."""
    try:
        return STATUS_TYPES[provider](str(raw).strip().lower()).value
    except ValueError:
        logger.warning("signer.status.unknown", extra={"provider": provider.value, "status": raw})
        raise UpstreamError(f"unexpected {provider.value} signer status: {raw!r}")


def check_transition(provider: Provider, current: str, new: str) -> str:
    allowed = TRANSITIONS[provider].get(current, frozenset())
    if new not in allowed:
        logger.warning(
            "signer.status.illegal_transition",
            extra={"provider": provider.value, "from": current, "to": new},
        )
        raise UpstreamError(f"illegal {provider.value} status transition {current!r} -> {new!r}")
    return new


# -----------------------------------------------------------------------------
# Signer
# -----------------------------------------------------------------------------
@dataclass
class Signer:
    signer_id: str
    provider: Provider
    status: str
    fid: Optional[int] = None
    approval_url: Optional[str] = None
    token: Optional[str] = None
    keypair: Optional[Keypair] = None
    created_at: int = field(default_factory=lambda: int(time.time()))
    updated_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def is_ready(self) -> bool:
        return self.status == READY_STATUS[self.provider]

    @property
    def can_publish(self) -> bool:
        return self.status in PUBLISHABLE_STATUSES[self.provider]

    def touch(self) -> None:
        self.updated_at = int(time.time())

    def to_record(self) -> Dict[str, Any]:
        """Session document; the only place the private key is serialized."""
        return {
            "signerId": self.signer_id,
            "provider": self.provider.value,
            "status": self.status,
            "fid": self.fid,
            "approvalUrl": self.approval_url,
            "token": self.token,
            "keypair": self.keypair.to_record() if self.keypair else None,
            "createdAt": self.created_at,
            "signerUpdatedAt": self.updated_at,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Signer":
        return cls(
            signer_id=data["signerId"],
            provider=Provider(data["provider"]),
            status=data["status"],
            fid=data.get("fid"),
            approval_url=data.get("approvalUrl"),
            token=data.get("token"),
            keypair=Keypair.from_record(data.get("keypair")),
            created_at=int(data.get("createdAt") or time.time()),
            updated_at=int(data.get("signerUpdatedAt") or time.time()),
        )

    def public_view(self) -> Dict[str, Any]:
        return {
            "signerId": self.signer_id,
            "provider": self.provider.value,
            "status": self.status,
            "fid": self.fid,
            "approvalUrl": self.approval_url,
            "publicKey": self.keypair.public_key if self.keypair else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
