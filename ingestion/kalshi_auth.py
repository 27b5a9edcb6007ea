"""RSA-PSS request signing for the Kalshi Trade API."""

from __future__ import annotations

import base64
import time
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from app.errors import InvalidInputError


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Load a PEM private key; PKCS#1 and PKCS#8 encodings are both accepted."""

    text = pem.strip().replace("\\n", "\n")
    try:
        key = serialization.load_pem_private_key(text.encode("utf-8"), password=None)
    except (ValueError, TypeError) as exc:
        raise InvalidInputError(f"kalshi auth_secret is not a valid PEM private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidInputError("kalshi auth_secret must be an RSA private key")
    return key


def sign_message(private_key: rsa.RSAPrivateKey, message: str) -> str:
    signature = private_key.sign(
        message.encode("utf-8"),
        padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        ),
        hashes.SHA256(),
    )
    return base64.b64encode(signature).decode("utf-8")


def signing_path(path: str) -> str:
    """Kalshi signs the URL path only; any query string is dropped."""
    return urlsplit(path).path or path.split("?", 1)[0]


class KalshiSigner:
    def __init__(self, api_key: str, private_key_pem: str) -> None:
        if not api_key or not private_key_pem:
            raise InvalidInputError("kalshi auth_key and auth_secret are required for trading")
        self.api_key = api_key
        self.private_key = load_private_key(private_key_pem)

    def headers(self, method: str, path: str, *, timestamp_ms: int | None = None) -> dict[str, str]:
        timestamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
        message = timestamp + method.upper() + signing_path(path)
        return {
            "KALSHI-ACCESS-KEY": self.api_key,
            "KALSHI-ACCESS-TIMESTAMP": timestamp,
            "KALSHI-ACCESS-SIGNATURE": sign_message(self.private_key, message),
        }
