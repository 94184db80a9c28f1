"""
castgate/clients.py

Thin async HTTP clients for the two upstreams:

  - FarcasterClient : the direct protocol (Farcaster client API + a public hub)
  - NeynarClient    : the managed signer/cast SDK (Neynar REST API)

Both translate every failure mode (timeout, transport error, non-2xx,
malformed body) into UpstreamError, forwarding the upstream's own message
where it sent one. Neither retries.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import httpx

from .errors import UpstreamError
from .logger import logger


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        for k in ("message", "error", "details"):
            v = body.get(k)
            if isinstance(v, str) and v:
                return v
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", errors[0]))
    return str(body)[:200]


class _BaseClient:
    name = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("upstream.timeout", extra={"upstream": self.name, "url": url})
            raise UpstreamError(f"{self.name} request timed out") from e
        except httpx.HTTPError as e:
            logger.warning("upstream.transport_error", extra={"upstream": self.name, "url": url, "error": str(e)})
            raise UpstreamError(f"{self.name} request failed: {e}") from e

        if resp.status_code >= 400:
            msg = _error_message(resp)
            logger.warning(
                "upstream.http_error",
                extra={"upstream": self.name, "url": url, "status_code": resp.status_code, "error": msg},
            )
            raise UpstreamError(f"{self.name} API error: {resp.status_code} - {msg}", upstream_status=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned a non-JSON body") from e


# -----------------------------------------------------------------------------
# Direct protocol
# -----------------------------------------------------------------------------
class FarcasterClient(_BaseClient):
    name = "farcaster"

    def __init__(
        self,
        api_base: str,
        hub_base: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_base, timeout=timeout, transport=transport)
        self.hub_base = hub_base.rstrip("/")

    @staticmethod
    def _result(data: Any, field: str) -> Dict[str, Any]:
        try:
            value = data["result"][field]
        except (KeyError, TypeError):
            raise UpstreamError(f"farcaster response missing result.{field}")
        if not isinstance(value, dict):
            raise UpstreamError(f"farcaster response result.{field} is not an object")
        return value

    async def create_signed_key_request(
        self, key_hex: str, request_fid: int, signature: str, deadline: int
    ) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            "/v2/signed-key-requests",
            json={
                "key": key_hex,
                "requestFid": int(request_fid),
                "signature": signature,
                "deadline": int(deadline),
            },
        )
        req = self._result(data, "signedKeyRequest")
        for k in ("token", "deeplinkUrl", "state"):
            if not req.get(k):
                raise UpstreamError(f"signed key request missing {k}")
        return req

    async def get_signed_key_request(self, token: str) -> Dict[str, Any]:
        data = await self._request("GET", "/v2/signed-key-request", params={"token": token})
        req = self._result(data, "signedKeyRequest")
        if not req.get("state"):
            raise UpstreamError("signed key request missing state")
        return req

    async def get_user(self, fid: int) -> Dict[str, Any]:
        data = await self._request("GET", "/v2/user", params={"fid": int(fid)})
        return self._result(data, "user")

    async def submit_message(self, message_bytes: bytes) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            f"{self.hub_base}/v1/submitMessage",
            content=message_bytes,
            headers={"Content-Type": "application/octet-stream"},
        )
        if not isinstance(data, dict) or not data.get("hash"):
            raise UpstreamError("hub accepted message but returned no hash")
        return data


# -----------------------------------------------------------------------------
# Managed SDK
# -----------------------------------------------------------------------------
class NeynarClient(_BaseClient):
    name = "neynar"

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = "https://api.neynar.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"x-api-key": api_key} if api_key else None
        super().__init__(api_base, timeout=timeout, headers=headers, transport=transport)
        self.available = bool(api_key)

    def _require(self) -> None:
        if not self.available:
            raise UpstreamError(
                "Neynar client not available",
                guidance="add NEYNAR_API_KEY to the environment to enable managed signers",
            )

    async def create_signer(self) -> Dict[str, Any]:
        self._require()
        data = await self._request("POST", "/v2/farcaster/signer")
        if not isinstance(data, dict) or not data.get("signer_uuid"):
            raise UpstreamError("neynar signer response missing signer_uuid")
        return data

    async def get_signer(self, signer_uuid: str) -> Dict[str, Any]:
        self._require()
        data = await self._request("GET", "/v2/farcaster/signer", params={"signer_uuid": signer_uuid})
        if not isinstance(data, dict) or not data.get("status"):
            raise UpstreamError("neynar signer response missing status")
        return data

    async def publish_cast(self, signer_uuid: str, text: str, parent: Optional[str] = None) -> Dict[str, Any]:
        self._require()
        body: Dict[str, Any] = {"signer_uuid": signer_uuid, "text": text}
        if parent:
            body["parent"] = parent
        data = await self._request("POST", "/v2/farcaster/cast", json=body)
        cast = data.get("cast") if isinstance(data, dict) else None
        if not isinstance(cast, dict) or not cast.get("hash"):
            raise UpstreamError("neynar cast response missing hash")
        return cast

    async def fetch_bulk_users(self, fids: Iterable[int]) -> list:
        self._require()
        data = await self._request(
            "GET",
            "/v2/farcaster/user/bulk",
            params={"fids": ",".join(str(int(f)) for f in fids)},
        )
        users = data.get("users") if isinstance(data, dict) else None
        return users if isinstance(users, list) else []
