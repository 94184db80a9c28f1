"""
castgate/lifecycle.py

Signer lifecycle orchestration: credential creation, read-through status
reconciliation, publishing, profile lookup with provider fallback, and the
periodic session sweep.

Error policy:
  - validation / not-found errors short-circuit
  - upstream failures during status reconciliation are logged and absorbed
    (the stored state is returned)
  - upstream failures during profile lookup are absorbed until every
    provider has failed
  - upstream failures during publish always surface
Nothing here retries.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .clients import FarcasterClient, NeynarClient
from .config import Settings
from .errors import NotFoundError, NotReadyError, UpstreamError, ValidationError
from .keys import custody_address
from .logger import logger
from .messages import MAX_CAST_CHARS, ParentRef
from .models import Provider, Signer, check_transition
from .providers import DirectProvider, ManagedProvider, PreApprovedProvider, SignerProvider
from .qr import make_qr_data_uri
from .signers import KeyedLocks, SignerRepository
from .storage import POSTS, SESSIONS, USERS, FlatFileStore, parse_iso

SETTINGS_APPROVAL_URL = "https://warpcast.com/~/settings/apps"


def parse_fid(raw: Any) -> int:
    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("fid is required")
    try:
        fid = int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"fid must be a positive integer, got {raw!r}")
    if fid <= 0:
        raise ValidationError(f"fid must be a positive integer, got {raw!r}")
    return fid


def parse_provider(raw: Any) -> Provider:
    try:
        return Provider(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Provider)
        raise ValidationError(f"unknown provider {raw!r} (expected one of: {allowed})")


class SignerLifecycleManager:
    def __init__(
        self,
        settings: Settings,
        store: FlatFileStore,
        farcaster: FarcasterClient,
        neynar: NeynarClient,
        repository: Optional[SignerRepository] = None,
    ):
        self.settings = settings
        self.store = store
        self.farcaster = farcaster
        self.neynar = neynar
        self.repository = repository or SignerRepository(store, max_size=settings.SIGNER_CACHE_SIZE)
        self.locks = KeyedLocks()
        self.providers: Dict[Provider, SignerProvider] = {
            Provider.HOSTED_PRE_APPROVED: PreApprovedProvider(neynar),
            Provider.HOSTED_MANAGED: ManagedProvider(neynar),
            Provider.DIRECT: DirectProvider(farcaster, settings),
        }
        self._custody_address: Optional[str] = None

    def _require(self, signer_id: str) -> Signer:
        signer = self.repository.get(signer_id)
        if signer is None:
            raise NotFoundError("Signer not found", signerId=signer_id)
        return signer

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------
    async def create_credential(
        self,
        fid: Any,
        provider: Any = Provider.HOSTED_PRE_APPROVED,
        credential_id: Optional[str] = None,
    ) -> Signer:
        fid = parse_fid(fid)
        provider = parse_provider(provider.value if isinstance(provider, Provider) else provider)

        signer = await self.providers[provider].create_credential(fid, credential_id)
        self.repository.add(signer)
        logger.info(
            "signer.created",
            extra={"signer_id": signer.signer_id, "provider": provider.value, "fid": fid, "status": signer.status},
        )
        return signer

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------
    async def check_status(self, signer_id: str) -> Signer:
        signer = self._require(signer_id)
        async with self.locks.hold(signer_id):
            await self._reconcile(signer)
        return signer

    async def _reconcile(self, signer: Signer) -> bool:
        """Apply the live upstream state to `signer`; False if nothing was observed."""
        provider = self.providers[signer.provider]
        try:
            live = await provider.refresh(signer)
            if live is None:
                return False
            status = check_transition(signer.provider, signer.status, live.status)
        except UpstreamError as e:
            logger.warning(
                "signer.status.fallback",
                extra={"signer_id": signer.signer_id, "provider": signer.provider.value, "error": e.message},
            )
            return False

        changed = status != signer.status or bool(live.fid and live.fid != signer.fid)
        if changed or provider.touch_on_refresh:
            previous = signer.status
            signer.status = status
            signer.fid = live.fid or signer.fid
            self.repository.save(signer)
            if changed:
                logger.info(
                    "signer.status.changed",
                    extra={"signer_id": signer.signer_id, "from": previous, "to": status},
                )
        return True

    # -------------------------------------------------------------------------
    # Publish
    # -------------------------------------------------------------------------
    async def publish(self, signer_id: str, text: str, parent_ref: Optional[str] = None) -> Dict[str, Any]:
        if not signer_id or not text:
            raise ValidationError("Signer id and text are required")
        if len(text) > MAX_CAST_CHARS:
            raise ValidationError(
                "text too long",
                guidance=f"Cast text must be {MAX_CAST_CHARS} characters or less",
            )
        parent = ParentRef.parse(parent_ref)

        signer = self._require(signer_id)
        async with self.locks.hold(signer_id):
            if not signer.can_publish:
                raise NotReadyError(
                    "Signer not approved yet",
                    guidance="complete the approval process, then check the signer status again",
                    currentStatus=signer.status,
                    approvalUrl=signer.approval_url,
                )

            before = (signer.status, signer.fid)
            try:
                result = await self.providers[signer.provider].publish(signer, text, parent)
            finally:
                # the direct flow re-reads upstream state; keep what it saw
                if (signer.status, signer.fid) != before:
                    self.repository.save(signer)

            post = self._record_post(signer, result["hash"], result.get("text", text), parent)

        logger.info(
            "cast.published",
            extra={"signer_id": signer_id, "provider": signer.provider.value, "hash": post["hash"]},
        )
        return post

    def _record_post(self, signer: Signer, cast_hash: str, text: str, parent: Optional[ParentRef]) -> Dict[str, Any]:
        timestamp = int(time.time() * 1000)
        post_id = f"{timestamp}_{cast_hash}"
        if self.store.get(POSTS, post_id) is not None:
            raise ValidationError(f"post {post_id} already recorded")
        return self.store.put(
            POSTS,
            post_id,
            {
                "id": post_id,
                "hash": cast_hash,
                "text": text,
                "signerId": signer.signer_id,
                "fid": signer.fid,
                "timestamp": timestamp,
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "provider": signer.provider.value,
                "parentRef": parent.as_string() if parent else None,
            },
        )

    def posts_for(self, fid: Any, limit: int = 50) -> List[Dict[str, Any]]:
        return self.store.posts_by_fid(parse_fid(fid), limit=limit)

    # -------------------------------------------------------------------------
    # Profiles (direct first, managed second)
    # -------------------------------------------------------------------------
    async def get_profile(self, fid: Any) -> Tuple[Dict[str, Any], str]:
        fid = parse_fid(fid)
        failures = []

        try:
            user = await self.farcaster.get_user(fid)
        except UpstreamError as e:
            logger.info("profile.direct_failed", extra={"fid": fid, "error": e.message})
            failures.append(f"direct: {e.message}")
        else:
            self.store.put(USERS, fid, {**user, "fid": fid})
            return user, Provider.DIRECT.value

        try:
            users = await self.neynar.fetch_bulk_users([fid])
        except UpstreamError as e:
            logger.info("profile.neynar_failed", extra={"fid": fid, "error": e.message})
            failures.append(f"neynar: {e.message}")
        else:
            if users:
                user = users[0]
                self.store.put(USERS, fid, {**user, "fid": fid})
                return user, Provider.HOSTED_MANAGED.value
            failures.append("neynar: user not found")

        raise UpstreamError(
            "Both Direct Farcaster API and Neynar failed to fetch user",
            guidance="Check if the FID is correct and try again",
            failures=failures,
        )

    # -------------------------------------------------------------------------
    # QR / approval
    # -------------------------------------------------------------------------
    def qr_code(self, signer_id: str) -> Dict[str, Any]:
        signer = self._require(signer_id)
        url = signer.approval_url
        # direct signers only hand out deep links; anything else goes to app settings
        if url and signer.provider is Provider.DIRECT and not url.startswith("farcaster://"):
            url = None

        if url:
            return {
                "qrCode": make_qr_data_uri(url),
                "approvalUrl": url,
                "provider": signer.provider.value,
                "message": "Scan QR code to approve your signer in Farcaster",
                "instructions": [
                    "1. Open your Farcaster app (Warpcast, etc.)",
                    "2. Scan this QR code or open the approval link",
                    "3. Approve the signer request in your app",
                    "4. Return here to check approval status",
                ],
            }

        return {
            "qrCode": make_qr_data_uri(SETTINGS_APPROVAL_URL),
            "approvalUrl": SETTINGS_APPROVAL_URL,
            "provider": signer.provider.value,
            "message": "Please go to Warpcast settings to approve this app",
            "instructions": [
                "1. Open Warpcast app",
                "2. Go to Settings -> Apps",
                "3. Find this app and approve it",
                "4. Return here to continue",
            ],
        }

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------
    def _app_custody_address(self) -> Optional[str]:
        if self._custody_address is None and self.settings.APP_MNEMONIC:
            try:
                self._custody_address = custody_address(self.settings.APP_MNEMONIC)
            except Exception as e:
                # eth-account raises its own ValidationError for bad phrases
                logger.error("app.mnemonic_invalid", extra={"error": str(e)})
        return self._custody_address

    def stats(self) -> Dict[str, Any]:
        missing = self.settings.direct_signing_missing
        direct = {"ready": not missing, "appFid": self.settings.APP_FID}
        if missing:
            direct["missing"] = missing
        else:
            direct["custodyAddress"] = self._app_custody_address()

        return {
            "stats": self.store.stats(),
            "liveSigners": len(self.repository),
            "providers": {
                "direct": "primary",
                "neynar": "fallback" if self.neynar.available else "unavailable",
            },
            "api_status": {
                "direct": "active",
                "neynar": "available" if self.neynar.available else "no_api_key",
            },
            "directSigning": direct,
        }

    # -------------------------------------------------------------------------
    # Session sweep
    # -------------------------------------------------------------------------
    async def sweep_sessions(self, now: Optional[datetime] = None) -> int:
        """Delete Session records (and their live signers) idle past the max age."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.settings.SESSION_MAX_AGE_SECONDS)
        removed = 0

        for key in self.store.keys(SESSIONS):
            doc = self.store.get(SESSIONS, key)
            if doc and doc.get("updatedAt") and not self.locks.locked(key):
                try:
                    expired = parse_iso(doc["updatedAt"]) < cutoff
                except ValueError:
                    logger.warning("session.bad_timestamp", extra={"signer_id": key})
                    expired = False
                if expired:
                    self.repository.forget(key)
                    removed += 1
                    logger.info("session.expired", extra={"signer_id": key})
            # one record at a time; let request handlers run in between
            await asyncio.sleep(0)

        if removed:
            logger.info("session.sweep", extra={"removed": removed})
        return removed


async def run_session_sweeper(manager: SignerLifecycleManager, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await manager.sweep_sessions()
        except Exception:
            logger.exception("session.sweep_failed")
