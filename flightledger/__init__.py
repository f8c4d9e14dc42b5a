"""FLIGHTLEDGER - Flight status sync and ledger commit engine.

Polls an external flight-status provider, validates status transitions,
and anchors selectively-encrypted flight records on an append-only ledger
while keeping a local mirror consistent with it.
"""

__version__ = "1.0.0"
