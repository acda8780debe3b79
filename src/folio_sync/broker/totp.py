# src/folio_sync/broker/totp.py

"""RFC 6238 time-based one-time codes (HMAC-SHA1, 30s step)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import struct
import time

from ..errors import ConfigurationError

TOTP_STEP_SECONDS = 30
TOTP_DIGITS = 6


def decode_secret(secret: str) -> bytes:
    """Decode a base32 seed as shown by authenticator apps (spaces/lowercase/no padding ok)."""
    cleaned = "".join(secret.split()).upper()
    if not cleaned:
        raise ConfigurationError("TOTP secret is empty")
    cleaned += "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(cleaned)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("TOTP secret is not valid base32") from exc


def hotp(key: bytes, counter: int, *, digits: int = TOTP_DIGITS) -> str:
    digest = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
    return str(code % (10**digits)).zfill(digits)


def generate_totp(
    secret: str,
    *,
    for_time: float | None = None,
    step: int = TOTP_STEP_SECONDS,
    digits: int = TOTP_DIGITS,
) -> str:
    ts = time.time() if for_time is None else float(for_time)
    return hotp(decode_secret(secret), int(ts // step), digits=digits)
