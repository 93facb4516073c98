"""IP address masking for risk assessments and audit entries."""

from __future__ import annotations

import hashlib
import hmac

MASK_PREFIX = "masked:"


class IpMasker:
    """Replaces raw IPs with a salted HMAC-SHA256 digest unless raw storage is enabled.

    The same IP always masks to the same value, so masked IPs can still be
    compared against each other.
    """

    def __init__(self, salt: str, store_raw: bool = False) -> None:
        self._salt = salt.encode("utf-8")
        self._store_raw = store_raw

    def mask(self, ip: str | None) -> str | None:
        if not ip:
            return None
        if self._store_raw:
            return ip
        digest = hmac.new(self._salt, ip.strip().encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{MASK_PREFIX}{digest}"
