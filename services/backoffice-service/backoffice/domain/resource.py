from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ResourceKind(str, Enum):
    account = "account"
    merchant = "merchant"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def collection(self) -> str:
        return f"{self.value}s"

    @classmethod
    def from_collection(cls, name: str) -> "ResourceKind | None":
        """Resolve the plural path segment used by the HTTP API."""
        for kind in cls:
            if kind.collection == name:
                return kind
        return None


class AccountStatus(str, Enum):
    pending = "Pending"
    active = "Active"
    suspended = "Suspended"
    inactive = "Inactive"


class MerchantStatus(str, Enum):
    pending_approval = "pending_approval"
    active = "active"
    suspended = "suspended"
    rejected = "rejected"


STATUS_ENUMS: dict[ResourceKind, type[Enum]] = {
    ResourceKind.account: AccountStatus,
    ResourceKind.merchant: MerchantStatus,
}

# Columns that may be serialised to API callers. Anything else (PIN and
# password hashes, QR tokens, settlement bank details) stays server side.
PUBLIC_FIELDS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.account: (
        "id",
        "display_id",
        "child_name",
        "guardian_name",
        "status",
        "balance",
        "account_type",
        "email",
        "notes",
        "last_activity",
        "created_at",
        "updated_at",
        "deleted_at",
    ),
    ResourceKind.merchant: (
        "id",
        "business_name",
        "contact_person",
        "contact_email",
        "contact_phone",
        "store_address",
        "category",
        "website",
        "status",
        "decline_reason",
        "submitted_at",
        "created_at",
        "updated_at",
        "deleted_at",
    ),
}


@dataclass(slots=True)
class Identity:
    """Request-scoped administrator identity decoded from a credential."""

    subject_id: str
    email: str
    role: str


@dataclass(slots=True)
class Resource:
    """An account or merchant row as read from the repository."""

    kind: ResourceKind
    id: str
    status: str
    deleted_at: datetime | None = None
    updated_at: datetime | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def public_view(self) -> dict[str, Any]:
        """Return the allow-listed fields that may leave the service."""
        merged = {
            **self.attributes,
            "id": self.id,
            "status": self.status,
            "deleted_at": self.deleted_at,
            "updated_at": self.updated_at,
        }
        return {name: merged[name] for name in PUBLIC_FIELDS[self.kind] if name in merged}
