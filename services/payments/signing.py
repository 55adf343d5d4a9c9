# services/payments/signing.py
"""
AWS Signature Version 2, as used by the FPS API and the co-branded UI.

StringToSign = VERB + "\n" + host + "\n" + path + "\n" + canonical query
where the canonical query is every parameter except the signature itself,
sorted by byte order of the name, RFC 3986 encoded, joined with "&".
The signature is base64(HMAC-SHA256(secret, StringToSign)).
"""

from __future__ import annotations
import base64
import hashlib
import hmac
from typing import Mapping
from urllib.parse import quote, urlsplit

SIGNATURE_METHOD = "HmacSHA256"
SIGNATURE_VERSION = "2"


def _enc(s: str) -> str:
    return quote(str(s), safe="-_.~")


def canonical_query(params: Mapping[str, str], signature_field: str = "Signature") -> str:
    pairs = sorted((k, v) for k, v in params.items()
                   if k != signature_field and v is not None)
    return "&".join(f"{_enc(k)}={_enc(v)}" for k, v in pairs)


def string_to_sign(verb: str, url: str, params: Mapping[str, str],
                   signature_field: str = "Signature") -> str:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if parts.port:
        host = f"{host}:{parts.port}"
    path = parts.path or "/"
    return "\n".join([verb.upper(), host, path, canonical_query(params, signature_field)])


def sign(secret: str, verb: str, url: str, params: Mapping[str, str],
         signature_field: str = "Signature") -> str:
    if not secret:
        raise ValueError("signing secret is empty")
    msg = string_to_sign(verb, url, params, signature_field)
    mac = hmac.new(secret.encode("utf-8"),
                   msg.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(mac).decode("ascii")


def verify(secret: str, verb: str, url: str, params: Mapping[str, str],
           signature_field: str = "Signature") -> bool:
    got = params.get(signature_field) or ""
    if not got:
        return False
    exp = sign(secret, verb, url, params, signature_field)
    return hmac.compare_digest(exp, got)
