"""HMAC helpers shared by the payment gateway and the webhook routers."""

import hashlib
import hmac
from typing import Optional, Union


def hmac_sha256_hex(secret: str, message: Union[bytes, str]) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def secrets_match(expected: Optional[str], provided: Optional[str]) -> bool:
    """Timing-safe comparison; missing values never match."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(
        expected.encode("utf-8"), provided.encode("utf-8")
    )


def verify_hmac_signature(
    secret: str, body: bytes, signature: Optional[str]
) -> bool:
    return secrets_match(hmac_sha256_hex(secret, body), signature)
