"""Shared fixtures.

The Farcaster API, the hub and Neynar are replaced by one in-process fake
served through ``httpx.MockTransport``, so the real clients, providers and
lifecycle manager run end-to-end without network access.
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Tuple
from urllib.parse import parse_qs

import httpx
import pytest

# ---------------------------------------------------------------------------
# Runtime env for the application
# ---------------------------------------------------------------------------

os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="castgate-test-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Ensure project root on PYTHONPATH so `import castgate` works without install
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from castgate.clients import FarcasterClient, NeynarClient  # noqa: E402
from castgate.config import Settings  # noqa: E402
from castgate.lifecycle import SignerLifecycleManager  # noqa: E402
from castgate.storage import FlatFileStore  # noqa: E402

# well-known development phrase (first account 0xf39F...2266)
TEST_MNEMONIC = "test test test test test test test test test test test junk"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
APP_FID = 9152

API_BASE = "https://api.farcaster.test"
HUB_BASE = "https://hub.farcaster.test"
NEYNAR_BASE = "https://api.neynar.test"
HUB_HASH = "0x" + "ab" * 20


# ---------------------------------------------------------------------------
# Fake upstream
# ---------------------------------------------------------------------------

class FakeUpstream:
    """Minimal stand-in for the Farcaster client API, a hub and Neynar."""

    def __init__(self) -> None:
        self.key_requests: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[int, Dict[str, Any]] = {}
        self.neynar_users: Dict[int, Dict[str, Any]] = {}
        self.neynar_signers: Dict[str, Dict[str, Any]] = {}
        self.neynar_casts: List[Dict[str, Any]] = []
        self.submitted: List[bytes] = []
        self.calls: List[Tuple[str, str, str]] = []
        # paths answering 500
        self.failing: set = set()

    # -- test helpers -------------------------------------------------------

    def set_state(self, token: str, state: str, user_fid: int | None = None) -> None:
        req = self.key_requests[token]
        req["state"] = state
        if user_fid is not None:
            req["userFid"] = user_fid

    def calls_to(self, path: str) -> int:
        return sum(1 for _, _, p in self.calls if p == path)

    # -- transport ----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        self.calls.append((request.method, host, path))
        if path in self.failing:
            return httpx.Response(500, json={"message": f"{path} is down"})

        if host == "api.neynar.test":
            if not request.headers.get("x-api-key"):
                return httpx.Response(401, json={"message": "missing api key"})
            return self._neynar(request)
        if host == "hub.farcaster.test" and path == "/v1/submitMessage":
            self.submitted.append(request.content)
            return httpx.Response(200, json={"hash": HUB_HASH})
        return self._farcaster(request)

    def _farcaster(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if request.method == "POST" and path == "/v2/signed-key-requests":
            body = _json(request)
            token = f"tok-{len(self.key_requests) + 1}"
            req = {
                "token": token,
                "deeplinkUrl": f"farcaster://signed-key-request?token={token}",
                "key": body["key"],
                "requestFid": body["requestFid"],
                "signature": body["signature"],
                "deadline": body["deadline"],
                "state": "pending",
            }
            self.key_requests[token] = req
            return httpx.Response(200, json={"result": {"signedKeyRequest": dict(req)}})

        if request.method == "GET" and path == "/v2/signed-key-request":
            req = self.key_requests.get(params.get("token"))
            if req is None:
                return httpx.Response(404, json={"errors": [{"message": "request not found"}]})
            return httpx.Response(200, json={"result": {"signedKeyRequest": dict(req)}})

        if request.method == "GET" and path == "/v2/user":
            user = self.users.get(int(params.get("fid")))
            if user is None:
                return httpx.Response(404, json={"errors": [{"message": "user not found"}]})
            return httpx.Response(200, json={"result": {"user": user}})

        return httpx.Response(404, json={"message": f"no route {path}"})

    def _neynar(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if path == "/v2/farcaster/signer" and request.method == "POST":
            uuid = f"nsig-{len(self.neynar_signers) + 1}"
            signer = {
                "signer_uuid": uuid,
                "public_key": "0x" + "11" * 32,
                "status": "pending_approval",
                "signer_approval_url": f"https://client.warpcast.com/deeplinks/signed-key-request?token={uuid}",
            }
            self.neynar_signers[uuid] = signer
            return httpx.Response(200, json=dict(signer))

        if path == "/v2/farcaster/signer" and request.method == "GET":
            signer = self.neynar_signers.get(params.get("signer_uuid"))
            if signer is None:
                return httpx.Response(404, json={"message": "Signer not found"})
            return httpx.Response(200, json=dict(signer))

        if path == "/v2/farcaster/cast" and request.method == "POST":
            body = _json(request)
            cast = {"hash": f"0x{len(self.neynar_casts) + 1:040x}", **body}
            self.neynar_casts.append(cast)
            return httpx.Response(200, json={"success": True, "cast": {"hash": cast["hash"], "text": cast["text"]}})

        if path == "/v2/farcaster/user/bulk":
            fids = [int(f) for f in parse_qs(request.url.query.decode())["fids"][0].split(",")]
            return httpx.Response(200, json={"users": [self.neynar_users[f] for f in fids if f in self.neynar_users]})

        return httpx.Response(404, json={"message": f"no route {path}"})


def _json(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content or b"{}")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def make_settings(data_dir: Path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "DATA_DIR": str(data_dir),
        "APP_FID": APP_FID,
        "APP_MNEMONIC": TEST_MNEMONIC,
        "NEYNAR_API_KEY": "test-neynar-key",
        "NEYNAR_API_BASE": NEYNAR_BASE,
        "FARCASTER_API_BASE": API_BASE,
        "FARCASTER_HUB_BASE": HUB_BASE,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_manager(settings: Settings, upstream: FakeUpstream) -> SignerLifecycleManager:
    transport = httpx.MockTransport(upstream.handler)
    return SignerLifecycleManager(
        settings=settings,
        store=FlatFileStore(settings.DATA_DIR),
        farcaster=FarcasterClient(API_BASE, HUB_BASE, transport=transport),
        neynar=NeynarClient(settings.NEYNAR_API_KEY, api_base=NEYNAR_BASE, transport=transport),
    )


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path / "data")


@pytest.fixture()
def store(tmp_path) -> FlatFileStore:
    return FlatFileStore(tmp_path / "store")


@pytest.fixture()
def manager(settings, upstream) -> SignerLifecycleManager:
    return make_manager(settings, upstream)
