"""
FlightLedger - Flight status transition validator

Deterministic gate between a polled status and a ledger commit. A status
change is authoritative only if it follows an edge of the static graph below.

    NDPT → OUT, OFF, ON, IN, CNCL
    OUT  → OFF, ON, IN, RTBL
    OFF  → ON, IN, DVRT
    ON   → IN, RTFL
    IN   → ON, NDPT
    CNCL → OUT, OFF, ON, IN
    RTBL → OUT, CNCL
    RTFL → OUT
    DVRT → ON
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from flightledger.models.flight import FlightStatus, TransitionDecision

logger = logging.getLogger(__name__)

S = FlightStatus

VALID_TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType({
    S.NDPT.value: frozenset({S.OUT.value, S.OFF.value, S.ON.value, S.IN.value, S.CNCL.value}),
    S.OUT.value: frozenset({S.OFF.value, S.ON.value, S.IN.value, S.RTBL.value}),
    S.OFF.value: frozenset({S.ON.value, S.IN.value, S.DVRT.value}),
    S.ON.value: frozenset({S.IN.value, S.RTFL.value}),
    S.IN.value: frozenset({S.ON.value, S.NDPT.value}),
    S.CNCL.value: frozenset({S.OUT.value, S.OFF.value, S.ON.value, S.IN.value}),
    S.RTBL.value: frozenset({S.OUT.value, S.CNCL.value}),
    S.RTFL.value: frozenset({S.OUT.value}),
    S.DVRT.value: frozenset({S.ON.value}),
})

REASON_SEED = "seed transition"
REASON_NO_CHANGE = "no change"
REASON_VALID = "valid transition"
REASON_INVALID = "transition not permitted"


def transition_edges() -> list[tuple[str, str]]:
    """All (from, to) edges of the graph."""
    return [(src, dst) for src, targets in VALID_TRANSITIONS.items() for dst in sorted(targets)]


def _normalize(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def validate_transition(previous: Optional[str], new: str) -> TransitionDecision:
    """
    Decide whether `previous` → `new` is an authoritative status change.

    Args:
        previous: Last committed status, or None on first sighting
        new: Status reported by the provider

    Returns:
        TransitionDecision; never raises
    """
    new_code = _normalize(new)

    if previous is None or not previous.strip():
        return TransitionDecision(allowed=True, reason=REASON_SEED, previous=None, new=new_code)

    prev_code = _normalize(previous)

    if prev_code == new_code:
        return TransitionDecision(allowed=False, reason=REASON_NO_CHANGE, previous=prev_code, new=new_code)

    if new_code in VALID_TRANSITIONS.get(prev_code, frozenset()):
        return TransitionDecision(allowed=True, reason=REASON_VALID, previous=prev_code, new=new_code)

    logger.info(f"[TRANSITION] Denied {prev_code} -> {new_code}")
    return TransitionDecision(
        allowed=False,
        reason=f"{REASON_INVALID}: {prev_code} -> {new_code}",
        previous=prev_code,
        new=new_code,
    )
