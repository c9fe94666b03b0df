"""Кодек и подпись LiqPay.

Данные передаются как base64(JSON), подпись считается как
base64(sha1(private_key + data + private_key)).
"""
import base64
import binascii
import hashlib
import hmac
import json
from urllib.parse import urlencode

from storefront.domain.exceptions import ConfigurationError, ValidationError

API_VERSION = 3


def encode_data(payload: dict) -> str:
    raw = json.dumps(payload, ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_data(data: str) -> dict:
    try:
        decoded = base64.b64decode(data, validate=True).decode("utf-8")
        payload = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationError(f"Некорректные данные платежа: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("Некорректные данные платежа: ожидается JSON-объект")
    return payload


def make_signature(private_key: str, data: str) -> str:
    if not private_key:
        raise ConfigurationError("LiqPay private key is not configured")
    digest = hashlib.sha1(f"{private_key}{data}{private_key}".encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(private_key: str, data: str, signature: str) -> bool:
    expected = make_signature(private_key, data)
    return hmac.compare_digest(expected.encode("ascii"), (signature or "").encode("utf-8"))


def checkout_url(base_url: str, data: str, signature: str) -> str:
    return f"{base_url}?{urlencode({'data': data, 'signature': signature})}"
