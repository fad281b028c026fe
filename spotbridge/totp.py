"""TOTP helpers for the web player token exchange.

The web player secret is shipped obfuscated: every byte is XORed with a
position dependent mask, and the real HMAC key is the base-32 encoding of the
decimal digits of the unmasked bytes.
"""
import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Dict, Iterable, Union

PERIOD = 30
DIGITS = 6

CipherBytes = Union[bytes, bytearray, Iterable[int]]


def xor_transform(cipher: CipherBytes) -> bytes:
    return bytes(byte ^ ((i % 33) + 9) for i, byte in enumerate(cipher))


def derive_secret(cipher: CipherBytes) -> str:
    """Turn obfuscated secret bytes into the unpadded base-32 TOTP secret"""
    digits = "".join(str(byte) for byte in xor_transform(cipher))
    return base64.b32encode(digits.encode("ascii")).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes:
    secret = secret.strip().upper()
    return base64.b32decode(secret + "=" * (-len(secret) % 8))


def generate_otp(secret: str, timestamp: int, period: int = PERIOD, digits: int = DIGITS) -> str:
    counter = int(timestamp) // period
    mac = hmac.new(_decode_secret(secret), counter.to_bytes(8, byteorder="big"), hashlib.sha1).digest()

    offset = mac[-1] & 0x0F
    binary = (
        (mac[offset] & 0x7F) << 24
        | (mac[offset + 1] & 0xFF) << 16
        | (mac[offset + 2] & 0xFF) << 8
        | (mac[offset + 3] & 0xFF)
    )
    return str(binary % (10 ** digits)).zfill(digits)


def build_legacy_params(server_timestamp: int, client_timestamp_ms: int) -> Dict[str, Union[int, str]]:
    """Extra query parameters the token endpoint expects for secret versions below 10"""
    server_date = datetime.fromtimestamp(server_timestamp, tz=timezone.utc)
    build_date = server_date.strftime("%Y-%m-%d")
    return {
        "sTime": server_timestamp,
        "cTime": client_timestamp_ms,
        "buildDate": build_date,
        "buildVer": f"web-player_{build_date}_{server_timestamp * 1000}_{secrets.token_hex(4)}",
    }
