"""Explicit state transitions for a betslip.

A betslip moves ``posted/pending`` -> ``settled/won|lost`` or ``void/void``.
Nothing leaves a terminal state.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from crystalfootball.betslips.pnl import calculate_combined_odds, should_settle_multi_leg
from crystalfootball.betslips.types import (
    VALID_STATES,
    Betslip,
    BetslipOutcome,
    BetslipStateError,
    BetslipStatus,
    BetslipType,
    utcnow,
)

SETTLEABLE_OUTCOMES = frozenset({BetslipOutcome.WON, BetslipOutcome.LOST, BetslipOutcome.VOID})


def is_valid_state(status: BetslipStatus | str, outcome: BetslipOutcome | str) -> bool:
    try:
        return (BetslipStatus(status), BetslipOutcome(outcome)) in VALID_STATES
    except ValueError:
        return False


def is_terminal(betslip: Betslip) -> bool:
    return betslip.status != BetslipStatus.POSTED


def _status_for(outcome: BetslipOutcome) -> BetslipStatus:
    return BetslipStatus.VOID if outcome == BetslipOutcome.VOID else BetslipStatus.SETTLED


def settle(
    betslip: Betslip,
    outcome: BetslipOutcome | str,
    at: datetime | None = None,
    notes: str | None = None,
) -> Betslip:
    """Manually settle a single betslip and return the updated copy."""

    try:
        outcome = BetslipOutcome(outcome)
    except ValueError:
        raise BetslipStateError("Invalid outcome. Must be won, lost, or void") from None
    if outcome not in SETTLEABLE_OUTCOMES:
        raise BetslipStateError("Invalid outcome. Must be won, lost, or void")
    if betslip.betslip_type == BetslipType.MULTI:
        raise BetslipStateError(
            "Multi-leg betslips are automatically settled based on leg statuses. "
            "Update individual leg statuses instead."
        )
    if is_terminal(betslip):
        raise BetslipStateError(f"Betslip is already settled as {betslip.outcome.value}")

    return replace(
        betslip,
        status=_status_for(outcome),
        outcome=outcome,
        settled_at=at or utcnow(),
        notes=notes or betslip.notes,
    )


def void(betslip: Betslip, at: datetime | None = None, notes: str | None = None) -> Betslip:
    """Cancel a posted betslip, single or multi-leg."""

    if is_terminal(betslip):
        raise BetslipStateError(f"Betslip is already settled as {betslip.outcome.value}")
    return replace(
        betslip,
        status=BetslipStatus.VOID,
        outcome=BetslipOutcome.VOID,
        settled_at=at or utcnow(),
        notes=notes or betslip.notes,
    )


def apply_leg_results(betslip: Betslip, at: datetime | None = None) -> Betslip:
    """Re-derive a multi-leg betslip from its legs.

    The cached combined odds are always refreshed. The outcome only changes
    while the betslip is still posted.
    """

    if betslip.betslip_type != BetslipType.MULTI:
        return betslip

    combined_odds = calculate_combined_odds(betslip.legs) if betslip.legs else None
    if is_terminal(betslip):
        return replace(betslip, combined_odds=combined_odds)

    decision = should_settle_multi_leg(betslip.legs)
    if not decision.should_settle:
        return replace(betslip, combined_odds=combined_odds)
    return replace(
        betslip,
        combined_odds=combined_odds,
        status=_status_for(decision.outcome),
        outcome=decision.outcome,
        settled_at=at or utcnow(),
    )


def betslip_type_for_leg_count(count: int) -> BetslipType:
    return BetslipType.MULTI if count >= 2 else BetslipType.SINGLE


def can_remove_leg(count: int) -> bool:
    """A betslip always keeps at least one leg."""

    return count > 1
