from typing import Dict, Literal, Tuple, get_args

from starfood.utils.errors import InvalidTransition

OrderStatus = Literal[
    "pending",
    "confirmed",
    "preparing",
    "ready",
    "delivering",
    "delivered",
    "cancelled",
]

ORDER_STATUSES: Tuple[str, ...] = get_args(OrderStatus)

TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})

# admins cannot cancel from "ready" onward
STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("preparing", "cancelled"),
    "preparing": ("ready", "cancelled"),
    "ready": ("delivering",),
    "delivering": ("delivered",),
    "delivered": (),
    "cancelled": (),
}


def allowed_transitions(current: str) -> Tuple[str, ...]:
    return STATUS_TRANSITIONS.get(current, ())


def can_transition(current: str, target: str) -> bool:
    return target in allowed_transitions(current)


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless current -> target is in the table."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
