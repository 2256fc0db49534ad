"""Declarative per-kind defaults.

Each kind names its owning module, priority and recipient tags once, so a new
HR domain only adds a catalog row and templates, never dispatch code.
"""

from collections.abc import Iterable, Mapping
from typing import NamedTuple
from uuid import UUID

from .guard.schemas import NotificationEvent
from .queue.models import Priority
from .recipients.schemas import Recipient, RecipientSpec, ResolutionContext


class KindDefaults(NamedTuple):
    module: str
    priority: Priority = Priority.NORMAL
    to_tags: tuple[str, ...] = ()
    cc_static_context: str | None = None
    cc_dynamic: tuple[str, ...] = ()


CATALOG: dict[str, KindDefaults] = {
    # Leave: the approver acts, the employee and HR hear about it
    "leave_submitted": KindDefaults("leave", Priority.HIGH, ("manager",), "leave", ("hr",)),
    "leave_approved": KindDefaults("leave", Priority.NORMAL, ("subject",), "leave", ("manager", "hr", "admin")),
    "leave_rejected": KindDefaults("leave", Priority.NORMAL, ("subject",), "leave", ("manager", "hr", "admin")),
    "leave_withdrawn": KindDefaults("leave", Priority.LOW, ("manager",), "leave", ("hr",)),
    # Performance
    "kra_assigned": KindDefaults("performance", Priority.NORMAL, ("subject",), "performance", ("manager",)),
    "kra_submitted": KindDefaults("performance", Priority.HIGH, ("manager",), "performance", ()),
    "kra_evaluated": KindDefaults("performance", Priority.NORMAL, ("subject",), "performance", ("hr",)),
    # Policy
    "policy_assigned": KindDefaults("policy", Priority.HIGH, ("subject",), "policy", ()),
    "policy_acknowledged": KindDefaults("policy", Priority.LOW, ("hr",), "policy", ()),
    # Explicit recipients only
    "system_notification": KindDefaults("system", Priority.NORMAL),
}


def get_defaults(kind: str) -> KindDefaults:
    try:
        return CATALOG[kind]
    except KeyError:
        raise ValueError(f"Unknown notification kind: {kind}") from None


def build_event(
    kind: str,
    reference_id: str | UUID,
    *,
    payload: Mapping | None = None,
    scope: str = "",
    subject_id: UUID | None = None,
    acting_user_id: UUID | None = None,
    acting_user_email: str | None = None,
    manager_id: UUID | None = None,
    to: Iterable[Recipient] = (),
    cc: Iterable[Recipient] = (),
    priority: Priority | None = None,
    max_retries: int | None = None,
) -> NotificationEvent:
    """Build a NotificationEvent from the catalog row for ``kind``.

    Explicit ``to``/``cc`` are added on top of the catalog tags.
    """
    defaults = get_defaults(kind)
    return NotificationEvent(
        module=defaults.module,
        reference_id=str(reference_id),
        kind=kind,
        scope=scope or "",
        recipients=RecipientSpec(
            to=list(to),
            to_tags=list(defaults.to_tags),
            cc_static=list(cc),
            cc_static_context=defaults.cc_static_context,
            cc_dynamic=list(defaults.cc_dynamic),
        ),
        context=ResolutionContext(
            subject_id=subject_id,
            acting_user_id=acting_user_id,
            acting_user_email=acting_user_email,
            manager_id=manager_id,
        ),
        payload=dict(payload or {}),
        priority=priority or defaults.priority,
        max_retries=max_retries,
    )
