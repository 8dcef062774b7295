"""Request signing for the realtime recognition endpoint.

The endpoint authenticates the WebSocket upgrade through query parameters: the
caller sends its identifiers, a local timestamp and an HMAC-SHA1 signature
computed over every other parameter. The base string is built from the
parameters sorted by key, each key and value percent-encoded exactly once with
``encodeURIComponent`` rules and joined as ``key=value`` pairs with ``&``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime
from typing import Dict, Mapping, Optional
from urllib.parse import quote

from ..data.models import ConnectionDescriptor, SessionCredentials
from .errors import CredentialsError

SIGNATURE_KEY = "signature"

# Characters encodeURIComponent leaves alone on top of ``quote``'s defaults.
_UNRESERVED = "!~*'()"


def _encode_component(value: str) -> str:
    return quote(value, safe=_UNRESERVED)


def build_base_string(params: Mapping[str, str]) -> str:
    """Return the canonical string the signature is computed over."""

    keys = sorted(key for key in params if key != SIGNATURE_KEY)
    return "&".join(f"{_encode_component(key)}={_encode_component(params[key])}" for key in keys)


def generate_signature(params: Mapping[str, str], secret: str) -> str:
    """Base64 encoded HMAC-SHA1 of the canonical base string."""

    base_string = build_base_string(params)
    digest = hmac.new(secret.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def format_utc(now: Optional[datetime] = None) -> str:
    """Render local wall-clock time as ``YYYY-MM-DDTHH:MM:SS+HHMM``.

    The server validates clock skew against this value, so the offset carries
    no colon and the time is local rather than UTC despite the parameter name.
    """

    moment = now or datetime.now()
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.strftime("%Y-%m-%dT%H:%M:%S%z")


def build_connection_descriptor(
    credentials: SessionCredentials,
    session_id: str,
    endpoint: str,
    now: Optional[datetime] = None,
) -> ConnectionDescriptor:
    missing = credentials.missing_fields()
    if missing:
        raise CredentialsError(f"Missing credentials: {', '.join(missing)}")

    params: Dict[str, str] = {
        "accessKeyId": credentials.access_key_id,
        "appId": credentials.app_id,
        "uuid": session_id,
        "utc": format_utc(now),
        "lang": credentials.lang or "autodialect",
        "audio_encode": credentials.audio_encode,
    }
    if credentials.audio_encode == "pcm_s16le":
        params["samplerate"] = str(credentials.sample_rate)

    params[SIGNATURE_KEY] = generate_signature(params, credentials.access_key_secret)
    return ConnectionDescriptor(endpoint=endpoint, params=params)


__all__ = [
    "SIGNATURE_KEY",
    "build_base_string",
    "build_connection_descriptor",
    "format_utc",
    "generate_signature",
]
