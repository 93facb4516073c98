"""Field encryption and IP masking."""

from escrow_settlement.security.encryption import (
    DECRYPTION_ERROR,
    Envelope,
    FieldCipher,
    UnreadableField,
    generate_key,
    is_unreadable,
)
from escrow_settlement.security.ip_masking import IpMasker

__all__ = [
    "DECRYPTION_ERROR",
    "Envelope",
    "FieldCipher",
    "UnreadableField",
    "generate_key",
    "is_unreadable",
    "IpMasker",
]
