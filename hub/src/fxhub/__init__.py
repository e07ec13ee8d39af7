"""
FX trade hub.

The hub ingests broker and venue trade confirmations (e-mail, FIX, file
drops), normalizes them into canonical trade legs and tracks each leg's
booking status in the downstream systems (MX3, Calypso) by reconciling
the acknowledgement files those systems write back.

Entry point: ``python -m fxhub.hub_main``.
"""

__version__ = "0.1.0"
