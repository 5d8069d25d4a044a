"""Client fingerprinting for rate limit keys.

The default key combines the caller's network origin (taken from proxy
headers) with a short base64 prefix of the User-Agent so that distinct users
behind one NAT address are less likely to share a budget. This is a
heuristic: collisions are expected and accepted.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any, Callable, Mapping

from admission_api.adapters.rate_limit.base import ClientKeyExtractor, KeyGenerator

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"
USER_AGENT_PREFIX_CHARS = 20

# Checked in order; the first non-empty value wins.
ADDRESS_HEADERS = ("x-forwarded-for", "x-real-ip", "x-client-ip")


def hash_client_key(key: str) -> str:
    """Hash a limiter key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _get_header(request: Any, name: str) -> str | None:
    """Read a header from a Starlette request or any object with a headers mapping."""
    headers: Mapping[str, str] | None = getattr(request, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive.
        value = headers.get(name.title())
    return value or None


class HeaderFingerprintExtractor:
    """Default extractor: ``<client address>:<user-agent base64 prefix>``."""

    def client_address(self, request: Any) -> str:
        forwarded_for = _get_header(request, ADDRESS_HEADERS[0])
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        for name in ADDRESS_HEADERS[1:]:
            value = _get_header(request, name)
            if value:
                return value

        return UNKNOWN_CLIENT

    def extract(self, request: Any) -> str:
        address = self.client_address(request)
        user_agent = _get_header(request, "user-agent") or UNKNOWN_CLIENT
        agent_prefix = base64.b64encode(user_agent.encode("utf-8")).decode("ascii")
        return f"{address}:{agent_prefix[:USER_AGENT_PREFIX_CHARS]}"


class CallableKeyExtractor:
    """Adapt a plain ``request -> str`` function to ClientKeyExtractor."""

    def __init__(self, func: Callable[[Any], str]) -> None:
        self._func = func

    def extract(self, request: Any) -> str:
        return self._func(request)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"CallableKeyExtractor({self._func!r})"


class FallbackKeyExtractor:
    """Run a custom extractor, falling back to the default when it misbehaves.

    Key derivation fails open: an exception or a non-string/empty result from
    the custom extractor is logged and replaced by the fallback's key, so a
    faulty key generator never breaks the protected handler path.
    """

    def __init__(self, primary: ClientKeyExtractor, fallback: ClientKeyExtractor) -> None:
        self.primary = primary
        self.fallback = fallback

    def extract(self, request: Any) -> str:
        try:
            key = self.primary.extract(request)
        except Exception as exc:
            logger.warning(
                "rate_limit.key_generator_failed",
                extra={
                    "reason": "exception",
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return self.fallback.extract(request)

        if not isinstance(key, str) or not key:
            logger.warning(
                "rate_limit.key_generator_failed",
                extra={
                    "reason": "invalid_key",
                    "key_type": type(key).__name__,
                },
            )
            return self.fallback.extract(request)

        return key


def resolve_key_extractor(key_generator: KeyGenerator | None) -> ClientKeyExtractor:
    """Build the effective extractor for a limiter.

    Args:
        key_generator: Custom extractor object, bare callable, or None.

    Returns:
        The default extractor when nothing is supplied, otherwise the custom
        one guarded by a fallback to the default.

    Raises:
        TypeError: If key_generator is neither an extractor nor callable.
    """

    default = HeaderFingerprintExtractor()
    if key_generator is None:
        return default

    if isinstance(key_generator, ClientKeyExtractor):
        primary: ClientKeyExtractor = key_generator
    elif callable(key_generator):
        primary = CallableKeyExtractor(key_generator)
    else:
        raise TypeError("key_generator must provide extract(request) or be callable")

    return FallbackKeyExtractor(primary, default)
