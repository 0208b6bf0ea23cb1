from __future__ import annotations

import base64
import hashlib
from typing import Any, Optional

from .aws import kms_client


def sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def kms_decrypt(ct_b64: str, *, client: Any = None) -> bytes:
    ct = base64.b64decode(ct_b64)
    kms = client or kms_client()
    r = kms.decrypt(CiphertextBlob=ct)
    return r["Plaintext"]


class KmsSecretDecrypter:
    """Secret recovery backed by KMS; ciphertexts are base64 blobs."""

    def __init__(self, client: Optional[Any] = None) -> None:
        self._client = client

    def decrypt(self, ciphertext: str) -> str:
        return kms_decrypt(ciphertext, client=self._client).decode("utf-8")
