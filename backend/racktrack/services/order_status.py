# Overview: Production status state machine for customer POs; pure, no I/O.

"""
RackTrack Production Status Workflow

STATE MACHINE:
    draft -> pending_approval -> approved -> sent_to_production -> in_production
          -> quality_check -> ready_for_invoice -> invoiced

    Side edges:
    - on_hold is entered from sent_to_production / in_production and
      leaves back to in_production (or cancelled)
    - quality_check can send work back to in_production
    - everything before quality_check can be cancelled

    TERMINAL: invoiced, cancelled (no outgoing edges, ever)

RULES:
1. Only edges listed in TRANSITIONS are legal; same-state requests are not edges.
2. Unrecognized status names are UnknownState, never InvalidTransition.
3. This module decides legality only. Persistence belongs to order_service.
"""

from __future__ import annotations

from enum import Enum
from typing import Union

from ..errors import InvalidTransition, UnknownState


class ProductionStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT_TO_PRODUCTION = "sent_to_production"
    IN_PRODUCTION = "in_production"
    ON_HOLD = "on_hold"
    QUALITY_CHECK = "quality_check"
    READY_FOR_INVOICE = "ready_for_invoice"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"


S = ProductionStatus

TRANSITIONS: dict[ProductionStatus, tuple[ProductionStatus, ...]] = {
    S.DRAFT: (S.PENDING_APPROVAL, S.CANCELLED),
    S.PENDING_APPROVAL: (S.APPROVED, S.CANCELLED),
    S.APPROVED: (S.SENT_TO_PRODUCTION, S.CANCELLED),
    S.SENT_TO_PRODUCTION: (S.IN_PRODUCTION, S.ON_HOLD, S.CANCELLED),
    S.IN_PRODUCTION: (S.QUALITY_CHECK, S.ON_HOLD, S.CANCELLED),
    S.ON_HOLD: (S.IN_PRODUCTION, S.CANCELLED),
    S.QUALITY_CHECK: (S.READY_FOR_INVOICE, S.IN_PRODUCTION),
    S.READY_FOR_INVOICE: (S.INVOICED,),
    S.INVOICED: (),
    S.CANCELLED: (),
}

# The table must cover every status; a new enum member without a row fails at import.
_missing = set(ProductionStatus) - set(TRANSITIONS)
if _missing:
    raise RuntimeError(f"TRANSITIONS has no row for: {sorted(s.value for s in _missing)}")

TERMINAL_STATUSES = frozenset(s for s, edges in TRANSITIONS.items() if not edges)

StatusLike = Union[ProductionStatus, str]


def parse_status(value: StatusLike) -> ProductionStatus:
    """Coerce a status name to ProductionStatus; UnknownState if it is not one."""
    if isinstance(value, ProductionStatus):
        return value
    try:
        return ProductionStatus(value)
    except ValueError:
        raise UnknownState(value) from None


def legal_transitions(current: StatusLike) -> list[str]:
    """Legal next statuses for `current`, in table order (empty for terminal states)."""
    return [s.value for s in TRANSITIONS[parse_status(current)]]


def is_legal(current: StatusLike, requested: StatusLike) -> bool:
    """
    True if current -> requested is an edge of the workflow.

    Raises:
        UnknownState: either name is not a ProductionStatus
    """
    return parse_status(requested) in TRANSITIONS[parse_status(current)]


def is_terminal(status: StatusLike) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def require_legal(current: StatusLike, requested: StatusLike) -> ProductionStatus:
    """
    Validate current -> requested and return the parsed target status.

    Raises:
        UnknownState: either name is not a ProductionStatus
        InvalidTransition: the edge is not in TRANSITIONS; carries the full
            legal set for `current` so the caller can offer valid choices
    """
    cur = parse_status(current)
    nxt = parse_status(requested)
    if nxt not in TRANSITIONS[cur]:
        raise InvalidTransition(cur.value, nxt.value, legal_transitions(cur))
    return nxt
