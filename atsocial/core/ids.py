from __future__ import annotations

import re
import secrets
import time
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from .errors import InvalidReference

AT_SCHEME = "at://"
PROFILE_COLLECTION = "app.bsky.actor.profile"

# Sortable base32 (AT Protocol TID alphabet): lexical order == numeric order.
S32 = "234567abcdefghijklmnopqrstuvwxyz"
RKEY_LEN = 13
_RKEY_RE = re.compile(r"^[234567abcdefghij][234567abcdefghijklmnopqrstuvwxyz]{12}$")
_COLLECTION_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]*(\.[a-zA-Z0-9-]+)+$")


class RecordRef(NamedTuple):
    owner_did: str
    collection: str
    rkey: str

    @property
    def uri(self) -> str:
        return build_record_uri(self.owner_did, self.collection, self.rkey)


def _s32_encode(n: int, width: int) -> str:
    out = []
    for _ in range(width):
        out.append(S32[n & 31])
        n >>= 5
    return "".join(reversed(out))


def _s32_decode(s: str) -> int:
    n = 0
    for ch in s:
        n = (n << 5) | S32.index(ch)
    return n


def generate_record_key(now_us: Optional[int] = None) -> str:
    """TID-style key: 53-bit microsecond timestamp + random 10-bit clock id.

    No coordination between processes; two generators hitting the same
    microsecond and drawing the same clock id would collide.
    """
    micros = now_us if now_us is not None else time.time_ns() // 1000
    clock_id = secrets.randbelow(1024)
    return _s32_encode(micros & ((1 << 53) - 1), 11) + _s32_encode(clock_id, 2)


def validate_record_key(rkey: str) -> bool:
    return bool(rkey) and bool(_RKEY_RE.match(rkey))


def record_key_timestamp(rkey: str) -> Optional[datetime]:
    if not validate_record_key(rkey):
        return None
    micros = _s32_decode(rkey[:11])
    return datetime.fromtimestamp(micros / 1_000_000, tz=timezone.utc)


def _valid_did(did: str) -> bool:
    return bool(did) and did.startswith("did:") and "/" not in did and len(did) > 4


def build_record_uri(owner_did: str, collection: str, rkey: str) -> str:
    if not _valid_did(owner_did):
        raise InvalidReference(f"Invalid DID: {owner_did!r}")
    if not collection or not _COLLECTION_RE.match(collection):
        raise InvalidReference(f"Invalid collection: {collection!r}")
    if not rkey or "/" in rkey:
        raise InvalidReference(f"Invalid record key: {rkey!r}")
    return f"{AT_SCHEME}{owner_did}/{collection}/{rkey}"


def parse_record_uri(uri: Optional[str]) -> Optional[RecordRef]:
    """Inverse of :func:`build_record_uri`; ``None`` for anything malformed."""
    if not uri or not isinstance(uri, str) or not uri.startswith(AT_SCHEME):
        return None
    parts = uri[len(AT_SCHEME):].split("/")
    if len(parts) != 3:
        return None
    did, collection, rkey = parts
    if not _valid_did(did) or not _COLLECTION_RE.match(collection) or not rkey:
        return None
    return RecordRef(did, collection, rkey)


def profile_uri(did: str) -> str:
    return build_record_uri(did, PROFILE_COLLECTION, "self")
