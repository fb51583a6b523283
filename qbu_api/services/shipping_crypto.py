from __future__ import annotations

"""
shipping_crypto.py

配送先情報の暗号化（AES-256-GCM）

トークン形式: v1.<iv_b64>.<cipher_b64>.<tag_b64>
"""

import base64
import binascii
import hashlib
import json
import os
import re
from dataclasses import asdict, dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from qbu_api.core.config import PLACEHOLDER_SECRET_KEY, settings

TOKEN_VERSION = "v1"
_IV_BYTES = 12
_TAG_BYTES = 16

_HEX64_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_POSTAL_RE = re.compile(r"^(\d{3})-?(\d{4})$")
_POSTAL_IN_TEXT_RE = re.compile(r"\b(\d{3})-?(\d{4})\b")


class ShippingCryptoError(RuntimeError):
    """トークンが壊れている / 暗号化できない"""


class ShippingKeyMissing(ShippingCryptoError):
    """QBU_SHIPPING_ENC_KEY も SECRET_KEY も使えない"""


@dataclass
class ShippingInfo:
    name: str
    email: str
    address: str
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    prefecture: Optional[str] = None
    city: Optional[str] = None
    town: Optional[str] = None
    address_line2: Optional[str] = None

    def to_json(self) -> str:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(data, ensure_ascii=False)


# ============================================================
# Hash / postal helpers
# ============================================================
def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def email_hash(email: Optional[str]) -> Optional[str]:
    norm = normalize_email(email)
    return hashlib.sha256(norm.encode("utf-8")).hexdigest() if norm else None


def is_valid_postal_code(code: Optional[str]) -> bool:
    return bool(_POSTAL_RE.match((code or "").strip()))


def postal_code_prefix(code: Optional[str]) -> Optional[str]:
    """"123-4567" → "123" """
    m = _POSTAL_RE.match((code or "").strip())
    return m.group(1) if m else None


def postal_code_prefix_from_address(address: Optional[str]) -> Optional[str]:
    m = _POSTAL_IN_TEXT_RE.search((address or "").strip())
    return m.group(1) if m else None


# ============================================================
# Key
# ============================================================
def decode_key_material(raw: Optional[str]) -> Optional[bytes]:
    """
    "base64:..." / "hex:..." / 64 桁 hex / 32 byte の base64 を受け付ける。
    どれでもなければ文字列の SHA-256 から作る。
    """
    s = (raw or "").strip()
    if not s:
        return None

    if s.startswith("base64:"):
        try:
            b = base64.b64decode(s[len("base64:"):], validate=False)
        except (binascii.Error, ValueError):
            return None
        return b[:32] if len(b) >= 32 else None

    if s.startswith("hex:"):
        h = s[len("hex:"):].strip()
        if not _HEX_RE.match(h) or len(h) % 2:
            return None
        b = bytes.fromhex(h)
        return b[:32] if len(b) >= 32 else None

    if _HEX64_RE.match(s):
        return bytes.fromhex(s)

    try:
        b = base64.b64decode(s, validate=True)
        if len(b) == 32:
            return b
    except (binascii.Error, ValueError):
        pass

    return hashlib.sha256(s.encode("utf-8")).digest()


def get_shipping_key() -> bytes:
    # SECRET_KEY が初期値のままなら使わない
    secret = "" if settings.SECRET_KEY == PLACEHOLDER_SECRET_KEY else settings.SECRET_KEY
    for raw in (settings.QBU_SHIPPING_ENC_KEY, secret):
        key = decode_key_material(raw)
        if key is not None and len(key) == 32:
            return key
    raise ShippingKeyMissing("shipping_encryption_key_missing")


# ============================================================
# Encrypt / decrypt
# ============================================================
def _b64(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def encrypt_shipping(info: ShippingInfo, key: Optional[bytes] = None) -> str:
    k = key or get_shipping_key()
    iv = os.urandom(_IV_BYTES)
    sealed = AESGCM(k).encrypt(iv, info.to_json().encode("utf-8"), None)
    ct, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return f"{TOKEN_VERSION}.{_b64(iv)}.{_b64(ct)}.{_b64(tag)}"


def decrypt_shipping(token: str, key: Optional[bytes] = None) -> ShippingInfo:
    parts = (token or "").split(".")
    if len(parts) != 4 or parts[0] != TOKEN_VERSION:
        raise ShippingCryptoError("bad_shipping_token")

    k = key or get_shipping_key()
    try:
        iv, ct, tag = (base64.b64decode(p) for p in parts[1:])
        plain = AESGCM(k).decrypt(iv, ct + tag, None)
        obj = json.loads(plain.decode("utf-8"))
    except (InvalidTag, binascii.Error, ValueError) as e:
        raise ShippingCryptoError("bad_shipping_token") from e
    if not isinstance(obj, dict):
        raise ShippingCryptoError("bad_shipping_token")

    def _s(key_: str) -> Optional[str]:
        v = obj.get(key_)
        return v if isinstance(v, str) else None

    return ShippingInfo(
        name=_s("name") or "",
        email=_s("email") or "",
        address=_s("address") or "",
        phone=_s("phone"),
        postal_code=_s("postal_code"),
        prefecture=_s("prefecture"),
        city=_s("city"),
        town=_s("town"),
        address_line2=_s("address_line2"),
    )
