"""Escrow lifecycle and settlement core.

Held-funds escrows with milestones, delivery-proof review, disputes, a
risk gate on creation and funding, field-level encryption and an
append-only audit trail. ``bootstrap.SettlementCore`` is the entry point.
"""

__version__ = "0.1.0"
