"""
castgate/providers.py

One class per signer provider, all exposing the same capability surface:

    create_credential(fid, credential_id) -> Signer
    refresh(signer)                       -> LiveState | None
    publish(signer, text, parent)         -> {"hash": ..., "text": ...}

`refresh` is the raw live lookup; whether its failures are absorbed
(status reads) or surfaced (direct publish) is the lifecycle manager's call.
Providers never touch the signer table or the store.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .clients import FarcasterClient, NeynarClient
from .config import Settings
from .errors import NotReadyError, PendingConfirmationError, ValidationError
from .keys import generate_keypair, key_request_deadline, sign_key_request
from .logger import logger
from .messages import ParentRef, build_cast_add
from .models import (
    DirectStatus,
    PreApprovedStatus,
    Provider,
    Signer,
    check_transition,
    parse_status,
)


@dataclass
class LiveState:
    status: str
    fid: Optional[int] = None


class SignerProvider:
    provider: Provider
    # managed signers get their timestamp refreshed on every successful check
    touch_on_refresh = False

    async def create_credential(self, fid: int, credential_id: Optional[str]) -> Signer:
        raise NotImplementedError

    async def refresh(self, signer: Signer) -> Optional[LiveState]:
        return None

    async def publish(self, signer: Signer, text: str, parent: Optional[ParentRef]) -> Dict[str, Any]:
        raise NotImplementedError


class _NeynarPublishing(SignerProvider):
    def __init__(self, neynar: NeynarClient):
        self.neynar = neynar

    async def publish(self, signer: Signer, text: str, parent: Optional[ParentRef]) -> Dict[str, Any]:
        target = None
        if parent is not None:
            target = parent.url or parent.cast_hash
        cast = await self.neynar.publish_cast(signer.signer_id, text, parent=target)
        return {"hash": cast["hash"], "text": cast.get("text", text)}


# -----------------------------------------------------------------------------
# Hosted, pre-approved (Sign In With Neynar)
# -----------------------------------------------------------------------------
class PreApprovedProvider(_NeynarPublishing):
    provider = Provider.HOSTED_PRE_APPROVED

    async def create_credential(self, fid: int, credential_id: Optional[str]) -> Signer:
        # the hosted widget already ran the approval; we only check shape
        credential_id = (credential_id or "").strip()
        if not credential_id:
            raise ValidationError("FID and signerUuid are required for SIWN flow")
        return Signer(
            signer_id=credential_id,
            provider=self.provider,
            status=PreApprovedStatus.APPROVED.value,
            fid=fid,
        )


# -----------------------------------------------------------------------------
# Hosted, managed by the SDK
# -----------------------------------------------------------------------------
class ManagedProvider(_NeynarPublishing):
    provider = Provider.HOSTED_MANAGED
    touch_on_refresh = True

    async def create_credential(self, fid: int, credential_id: Optional[str]) -> Signer:
        created = await self.neynar.create_signer()
        return Signer(
            signer_id=str(created["signer_uuid"]),
            provider=self.provider,
            status=parse_status(self.provider, created.get("status", "generated")),
            fid=created.get("fid") or fid,
            approval_url=created.get("signer_approval_url"),
        )

    async def refresh(self, signer: Signer) -> Optional[LiveState]:
        live = await self.neynar.get_signer(signer.signer_id)
        return LiveState(status=parse_status(self.provider, live["status"]), fid=live.get("fid"))


# -----------------------------------------------------------------------------
# Direct protocol (Ed25519 signed key request + hub submission)
# -----------------------------------------------------------------------------
class DirectProvider(SignerProvider):
    provider = Provider.DIRECT

    def __init__(self, farcaster: FarcasterClient, settings: Settings):
        self.farcaster = farcaster
        self.settings = settings

    async def create_credential(self, fid: int, credential_id: Optional[str]) -> Signer:
        missing = self.settings.direct_signing_missing
        if missing:
            raise ValidationError(
                f"{' and '.join(missing)} environment variables are required",
                guidance="configure the app account used to sign key requests",
            )

        keypair = generate_keypair()
        deadline = key_request_deadline(self.settings.SIGNED_KEY_REQUEST_TTL_SECONDS)
        try:
            signature = sign_key_request(
                keypair.public_key,
                self.settings.APP_FID,
                self.settings.APP_MNEMONIC,
                deadline,
            )
        except Exception as e:
            # eth-account raises its own error types for a malformed phrase
            logger.error("signer.key_request.sign_failed", extra={"error": str(e)})
            raise ValidationError(
                "Failed to generate Signed Key Request signature",
                guidance="check that APP_MNEMONIC is a valid recovery phrase",
            ) from e

        req = await self.farcaster.create_signed_key_request(
            keypair.public_key,
            self.settings.APP_FID,
            signature,
            deadline,
        )
        logger.info(
            "signer.key_request.created",
            extra={"fid": fid, "state": req["state"], "deadline": deadline},
        )
        return Signer(
            signer_id=str(uuid.uuid4()),
            provider=self.provider,
            status=parse_status(self.provider, req["state"]),
            fid=req.get("userFid") or fid,
            approval_url=req["deeplinkUrl"],
            token=req["token"],
            keypair=keypair,
        )

    async def refresh(self, signer: Signer) -> Optional[LiveState]:
        if not signer.token:
            return None
        req = await self.farcaster.get_signed_key_request(signer.token)
        return LiveState(status=parse_status(self.provider, req["state"]), fid=req.get("userFid"))

    async def publish(self, signer: Signer, text: str, parent: Optional[ParentRef]) -> Dict[str, Any]:
        if signer.keypair is None:
            raise ValidationError(
                "keys not found",
                guidance="signer setup incomplete, reconnect your Farcaster account",
            )
        if not signer.token:
            raise NotReadyError(
                "signer token missing",
                guidance="signer setup incomplete, reconnect your Farcaster account",
            )

        # always re-read upstream state before signing
        live = await self.refresh(signer)
        status = check_transition(self.provider, signer.status, live.status)
        if status != signer.status or (live.fid and live.fid != signer.fid):
            signer.status = status
            signer.fid = live.fid or signer.fid

        if status == DirectStatus.APPROVED.value:
            raise PendingConfirmationError(
                "signer approved, waiting for onchain confirmation",
                guidance="signer approved but waiting for confirmation, retry later",
                currentStatus=status,
                approvalUrl=signer.approval_url,
            )
        if status != DirectStatus.COMPLETED.value:
            raise NotReadyError(
                f"signer not fully approved (status: {status})",
                guidance="complete the approval in your Farcaster app, then check status again",
                currentStatus=status,
                approvalUrl=signer.approval_url,
            )

        message = build_cast_add(
            signer.keypair.private_key,
            signer.fid,
            text,
            network=self.settings.FARCASTER_NETWORK,
            parent=parent,
        )
        result = await self.farcaster.submit_message(message.encode())
        logger.info(
            "cast.submitted",
            extra={"fid": signer.fid, "hash": result.get("hash"), "local_hash": message.hash_hex},
        )
        return {"hash": result["hash"], "text": text}
