"""Status lifecycle for accounts and merchants.

The transition table below is the single source of truth for which
administrative action may move a resource from one status to another.
``apply_transition`` performs no I/O: callers read the persisted status,
ask for a decision, then hand the returned patch to a conditional update
whose predicate pins the status that was read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .resource import STATUS_ENUMS, AccountStatus, MerchantStatus, ResourceKind

DEFAULT_REASON = "No reason provided"


class Action(str, Enum):
    approve = "approve"
    suspend = "suspend"
    reactivate = "reactivate"
    reject = "reject"


class ReasonPolicy(str, Enum):
    keep = "keep"
    record = "record"
    clear = "clear"


@dataclass(frozen=True, slots=True)
class Transition:
    sources: frozenset[Enum]
    target: Enum
    soft_delete: bool = False
    reason_policy: ReasonPolicy = ReasonPolicy.keep


@dataclass(frozen=True, slots=True)
class KindProfile:
    """Per-kind columns touched by every successful transition."""

    touch_fields: tuple[str, ...]
    reason_field: str | None = None


PROFILES: dict[ResourceKind, KindProfile] = {
    ResourceKind.account: KindProfile(touch_fields=("updated_at", "last_activity")),
    ResourceKind.merchant: KindProfile(touch_fields=("updated_at",), reason_field="decline_reason"),
}

TRANSITIONS: dict[ResourceKind, dict[Action, Transition]] = {
    ResourceKind.account: {
        Action.approve: Transition(
            sources=frozenset({AccountStatus.pending}),
            target=AccountStatus.active,
        ),
        Action.suspend: Transition(
            sources=frozenset({AccountStatus.active}),
            target=AccountStatus.suspended,
        ),
        Action.reactivate: Transition(
            sources=frozenset({AccountStatus.suspended}),
            target=AccountStatus.active,
        ),
        Action.reject: Transition(
            sources=frozenset({AccountStatus.pending, AccountStatus.active}),
            target=AccountStatus.inactive,
            soft_delete=True,
        ),
    },
    ResourceKind.merchant: {
        Action.approve: Transition(
            sources=frozenset({MerchantStatus.pending_approval}),
            target=MerchantStatus.active,
            reason_policy=ReasonPolicy.clear,
        ),
        Action.suspend: Transition(
            sources=frozenset({MerchantStatus.active}),
            target=MerchantStatus.suspended,
            reason_policy=ReasonPolicy.record,
        ),
        # Only a suspension can be undone; rejected merchants stay rejected.
        Action.reactivate: Transition(
            sources=frozenset({MerchantStatus.suspended}),
            target=MerchantStatus.active,
            reason_policy=ReasonPolicy.clear,
        ),
        Action.reject: Transition(
            sources=frozenset(
                {MerchantStatus.pending_approval, MerchantStatus.active, MerchantStatus.suspended}
            ),
            target=MerchantStatus.rejected,
            reason_policy=ReasonPolicy.record,
        ),
    },
}


@dataclass(frozen=True, slots=True)
class TransitionResult:
    previous_status: str
    new_status: str
    patch: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: str


def apply_transition(
    kind: ResourceKind,
    current_status: str,
    action: Action | str,
    *,
    now: datetime,
    reason: str | None = None,
) -> TransitionResult | Rejected:
    """Decide whether ``action`` is legal from ``current_status``.

    Parameters
    ----------
    kind:
        Resource kind whose table applies.
    current_status:
        Status read from storage within the same operation.
    action:
        Requested administrative action.
    now:
        Server clock reading used for every timestamp in the patch.
    reason:
        Optional operator-supplied reason, stored where the kind keeps one.

    Returns
    -------
    TransitionResult | Rejected
        The new status with the exact column patch, or the rejection reason.
    """
    transition = _lookup(kind, action)
    if transition is None:
        return Rejected(f"unsupported action {action!r} for {kind.value}")
    current = _parse_status(kind, current_status)
    if current is None:
        return Rejected(f"unknown status {current_status!r}")
    if current not in transition.sources:
        return Rejected("not eligible")

    profile = PROFILES[kind]
    patch: dict[str, Any] = {"status": transition.target.value}
    for name in profile.touch_fields:
        patch[name] = now
    if transition.soft_delete:
        patch["deleted_at"] = now
    if profile.reason_field is not None:
        if transition.reason_policy is ReasonPolicy.record:
            patch[profile.reason_field] = reason or DEFAULT_REASON
        elif transition.reason_policy is ReasonPolicy.clear:
            patch[profile.reason_field] = None

    return TransitionResult(
        previous_status=current.value,
        new_status=transition.target.value,
        patch=patch,
    )


def _lookup(kind: ResourceKind, action: Action | str) -> Transition | None:
    try:
        parsed = Action(action)
    except ValueError:
        return None
    return TRANSITIONS[kind].get(parsed)


def _parse_status(kind: ResourceKind, status: str) -> Enum | None:
    try:
        return STATUS_ENUMS[kind](status)
    except ValueError:
        return None
