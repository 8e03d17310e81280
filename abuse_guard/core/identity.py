"""Client identity resolution for rate limiting.

Derives the identifier a request is counted against and the privacy-safe hash
used wherever that identifier reaches storage or logs. Raw identifiers (IP
addresses, wallet addresses, emails, fingerprints) are only ever held in
memory for the duration of a check.
"""

from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

UNKNOWN_CLIENT = "unknown"

HASH_LENGTH = 16


class FactorType(str, Enum):
    """Identity axis a counter is keyed on."""

    IP = "ip"
    WALLET = "wallet"
    EMAIL = "email"
    DEVICE = "device"


@dataclass(frozen=True)
class ClientRequest:
    """Framework-independent view of the request fields the limiter reads.

    Attributes:
        headers: Header mapping with lower-cased names.
        client_host: Address of the direct connection, if known.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        value = self.headers.get(name.lower())
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def user_agent(self) -> str | None:
        return self.header("user-agent")

    @classmethod
    def from_request(cls, request: Any) -> "ClientRequest":
        """Build a ClientRequest from a Starlette/FastAPI request.

        Args:
            request: Object exposing ``headers`` and ``client`` like
                ``starlette.requests.Request``.

        Returns:
            ClientRequest with normalized header names.
        """

        raw_headers = getattr(request, "headers", None) or {}
        headers = {str(k).lower(): str(v) for k, v in raw_headers.items()}
        client = getattr(request, "client", None)
        client_host = getattr(client, "host", None) if client else None
        return cls(headers=headers, client_host=client_host)


def normalize_identifier(identifier: str) -> str:
    """Canonical form of an identifier.

    IP addresses take their compressed form (``2001:DB8:0::1`` becomes
    ``2001:db8::1``); anything else is trimmed and lower-cased.
    """

    value = identifier.strip()
    try:
        return ipaddress.ip_address(value).compressed
    except ValueError:
        return value.lower()


def resolve_client_identifier(request: ClientRequest | None, explicit: str | None = None) -> str:
    """Resolve the identifier a request is rate limited against.

    Resolution order:
    1. Explicit identifier supplied by the caller.
    2. First entry of ``X-Forwarded-For``.
    3. ``X-Real-IP``.
    4. Direct connection address.
    5. The literal ``"unknown"``.

    Every resolved value goes through ``normalize_identifier``. Never raises:
    missing request fields degrade to ``"unknown"``.

    Args:
        request: Request view; may be None for out-of-band checks.
        explicit: Optional identifier such as a wallet address or email.

    Returns:
        Raw (unhashed) identifier string.
    """

    if explicit and explicit.strip():
        return normalize_identifier(explicit)

    if request is None:
        return UNKNOWN_CLIENT

    forwarded = request.header("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return normalize_identifier(first)

    real_ip = request.header("x-real-ip")
    if real_ip:
        return normalize_identifier(real_ip)

    if request.client_host:
        return normalize_identifier(request.client_host)

    return UNKNOWN_CLIENT


def derive_device_fingerprint(request: ClientRequest | None) -> str:
    """Combine user-agent, accept-language and accept-encoding into one string.

    Returns an empty string when none of the headers are present, so callers
    can skip the device factor instead of bucketing every header-less client
    together.
    """

    if request is None:
        return ""

    parts = [
        request.header("user-agent") or "",
        request.header("accept-language") or "",
        request.header("accept-encoding") or "",
    ]
    if not any(parts):
        return ""
    return "|".join(parts)


def hash_identifier(identifier: str) -> str:
    """One-way, deterministic hash used for storage keys and log fields.

    Args:
        identifier: Raw identifier.

    Returns:
        First 16 hex chars of the SHA-256 digest.
    """

    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def infer_factor_type(identifier: str) -> FactorType:
    """Guess the identity axis from the identifier's shape.

    ``@`` means email, a ``0x`` prefix means wallet, anything else is an IP.
    """

    if "@" in identifier:
        return FactorType.EMAIL
    if identifier.lower().startswith("0x"):
        return FactorType.WALLET
    return FactorType.IP
