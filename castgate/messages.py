"""
castgate/messages.py

Farcaster CastAdd message construction for direct hub submission.

A hub accepts a protobuf-encoded `Message` (classes in farcaster_proto.py):

    data              MessageData {CAST_ADD, fid, timestamp, network, CastAddBody}
    hash              BLAKE3(data_bytes)[:20]
    hash_scheme       BLAKE3
    signature         Ed25519(signer_sk, hash)
    signature_scheme  ED25519
    signer            32-byte Ed25519 public key
    data_bytes        the exact bytes that were hashed

`timestamp` is seconds since the Farcaster epoch (2021-01-01Z). Hubs hash
`data_bytes` when present, so the serialized MessageData is produced once and
reused for hashing, signing and the envelope.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

import blake3

from . import farcaster_proto as pb
from .errors import ValidationError
from .keys import hex_to_bytes, load_private_key, public_key_bytes

FARCASTER_EPOCH = 1609459200  # 2021-01-01T00:00:00Z

NETWORKS = pb.FARCASTER_NETWORKS

MAX_CAST_CHARS = 320

_CAST_ID_RE = re.compile(r"^(\d+):(0x[0-9a-fA-F]{40})$")


# -----------------------------------------------------------------------------
# Parent reference
# -----------------------------------------------------------------------------
@dataclass
class ParentRef:
    url: Optional[str] = None
    cast_fid: Optional[int] = None
    cast_hash: Optional[str] = None

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["ParentRef"]:
        """
        Accept either a parent URL (channel / any URI) or "<fid>:0x<hash>"
        pointing at another cast.
        """
        if raw is None:
            return None
        raw = str(raw).strip()
        if not raw:
            return None
        m = _CAST_ID_RE.match(raw)
        if m:
            return cls(cast_fid=int(m.group(1)), cast_hash=m.group(2).lower())
        if "://" not in raw:
            raise ValidationError(
                "invalid parent reference",
                guidance="use a parent URL or '<fid>:0x<cast hash>'",
            )
        return cls(url=raw)

    def as_string(self) -> str:
        if self.url:
            return self.url
        return f"{self.cast_fid}:{self.cast_hash}"


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------
def farcaster_timestamp(now: Optional[float] = None) -> int:
    return int(now if now is not None else time.time()) - FARCASTER_EPOCH


def cast_add_body(text: str, parent: Optional[ParentRef] = None):
    body = pb.CastAddBody(text=text)
    if parent and parent.cast_hash:
        body.parent_cast_id.CopyFrom(pb.CastId(fid=parent.cast_fid or 0, hash=hex_to_bytes(parent.cast_hash)))
    elif parent and parent.url:
        body.parent_url = parent.url
    return body


def encode_message_data(
    fid: int,
    text: str,
    network: str = "mainnet",
    parent: Optional[ParentRef] = None,
    timestamp: Optional[int] = None,
) -> bytes:
    if network not in NETWORKS:
        raise ValueError(f"unknown network: {network}")
    data = pb.MessageData(
        type=pb.MESSAGE_TYPE_CAST_ADD,
        fid=int(fid),
        timestamp=farcaster_timestamp() if timestamp is None else timestamp,
        network=NETWORKS[network],
    )
    # CAST_ADD always carries a body, even an empty one
    data.cast_add_body.SetInParent()
    data.cast_add_body.CopyFrom(cast_add_body(text, parent))
    return data.SerializeToString()


def message_hash(data_bytes: bytes) -> bytes:
    return blake3.blake3(data_bytes).digest()[:20]


@dataclass
class SignedMessage:
    data_bytes: bytes
    hash: bytes
    signature: bytes
    signer: bytes

    @property
    def hash_hex(self) -> str:
        return "0x" + self.hash.hex()

    def to_proto(self):
        return pb.Message(
            data=pb.MessageData.FromString(self.data_bytes),
            hash=self.hash,
            hash_scheme=pb.HASH_SCHEME_BLAKE3,
            signature=self.signature,
            signature_scheme=pb.SIGNATURE_SCHEME_ED25519,
            signer=self.signer,
            data_bytes=self.data_bytes,
        )

    def encode(self) -> bytes:
        return self.to_proto().SerializeToString()


def build_cast_add(
    private_key_hex: str,
    fid: int,
    text: str,
    network: str = "mainnet",
    parent: Optional[ParentRef] = None,
    timestamp: Optional[int] = None,
) -> SignedMessage:
    """Build and sign a CastAdd message with the signer's Ed25519 key."""
    if len(text) > MAX_CAST_CHARS:
        raise ValidationError("text too long", guidance=f"casts are limited to {MAX_CAST_CHARS} characters")

    sk = load_private_key(private_key_hex)
    data_bytes = encode_message_data(fid, text, network=network, parent=parent, timestamp=timestamp)
    digest = message_hash(data_bytes)
    return SignedMessage(
        data_bytes=data_bytes,
        hash=digest,
        signature=sk.sign(digest),
        signer=public_key_bytes(sk),
    )
