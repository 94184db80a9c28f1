# castgate/keys.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Key material for the direct-protocol signer flow.
#
# Two distinct keys are involved and must never be confused:
#   - the USER signer key: a fresh Ed25519 keypair generated per signer. The
#     public half is what the user approves in their Farcaster client; the
#     private half signs casts on their behalf.
#   - the APP custody key: derived from APP_MNEMONIC (secp256k1). It signs the
#     EIP-712 SignedKeyRequest that vouches "app APP_FID requests this key".
#
# Encoding conventions (match the Farcaster client API):
#   - public key  : "0x" + 64 hex chars (32 raw bytes)
#   - private key : 64 hex chars (32-byte raw Ed25519 seed), no prefix
#   - signature   : "0x" + 130 hex chars (r || s || v)
# -----------------------------------------------------------------------------

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from eth_account import Account

SIGNED_KEY_REQUEST_VALIDATOR_EIP_712_DOMAIN = {
    "name": "Farcaster SignedKeyRequestValidator",
    "version": "1",
    "chainId": 10,
    "verifyingContract": "0x00000000FC700472606ED4fA22623Acf62c60553",
}

SIGNED_KEY_REQUEST_TYPE = [
    {"name": "requestFid", "type": "uint256"},
    {"name": "key", "type": "bytes"},
    {"name": "deadline", "type": "uint256"},
]

Account.enable_unaudited_hdwallet_features()


# -----------------------------------------------------------------------------
# Hex helpers
# -----------------------------------------------------------------------------
def hex_to_bytes(s: str) -> bytes:
    """Decode hex with or without a 0x prefix."""
    s = str(s).strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    return bytes.fromhex(s)


def bytes_to_hex(b: bytes, prefix: bool = True) -> str:
    return ("0x" if prefix else "") + b.hex()


# -----------------------------------------------------------------------------
# User signer keys (Ed25519)
# -----------------------------------------------------------------------------
@dataclass
class Keypair:
    public_key: str
    private_key: str

    def to_record(self) -> Dict[str, str]:
        return {"publicKey": self.public_key, "privateKey": self.private_key}

    @classmethod
    def from_record(cls, data: Optional[Dict[str, Any]]) -> Optional["Keypair"]:
        if not data or not data.get("privateKey") or not data.get("publicKey"):
            return None
        return cls(public_key=data["publicKey"], private_key=data["privateKey"])


def generate_keypair() -> Keypair:
    sk = Ed25519PrivateKey.generate()
    raw_sk = sk.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    raw_pk = sk.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return Keypair(public_key=bytes_to_hex(raw_pk), private_key=bytes_to_hex(raw_sk, prefix=False))


def load_private_key(private_key_hex: str) -> Ed25519PrivateKey:
    """
    Load a raw Ed25519 private key from hex.

    The key MUST be exactly 32 bytes (raw seed), no PEM, no metadata.
    """
    raw = hex_to_bytes(private_key_hex)
    if len(raw) != 32:
        raise ValueError("Ed25519 raw private key must be 32 bytes")
    return Ed25519PrivateKey.from_private_bytes(raw)


def public_key_bytes(sk: Ed25519PrivateKey) -> bytes:
    return sk.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


# -----------------------------------------------------------------------------
# SignedKeyRequest (EIP-712, app custody key)
# -----------------------------------------------------------------------------
def key_request_deadline(ttl_seconds: int, now: Optional[int] = None) -> int:
    return int(now if now is not None else time.time()) + int(ttl_seconds)


def sign_key_request(public_key_hex: str, app_fid: int, mnemonic: str, deadline: int) -> str:
    """
    Sign the SignedKeyRequest typed data binding `public_key_hex` to `app_fid`.

    The signature is only valid until `deadline` (unix seconds); the Farcaster
    client API rejects it afterwards.
    """
    account = Account.from_mnemonic(mnemonic)
    signed = account.sign_typed_data(
        domain_data=SIGNED_KEY_REQUEST_VALIDATOR_EIP_712_DOMAIN,
        message_types={"SignedKeyRequest": SIGNED_KEY_REQUEST_TYPE},
        message_data={
            "requestFid": int(app_fid),
            "key": hex_to_bytes(public_key_hex),
            "deadline": int(deadline),
        },
    )
    return bytes_to_hex(bytes(signed.signature))


def custody_address(mnemonic: str) -> str:
    return Account.from_mnemonic(mnemonic).address
