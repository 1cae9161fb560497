"""Maps identity-provider tenant ids onto internal tenant keys.

The mapping table is small and rarely changes, so readers get an immutable
tuple snapshot and writers swap in a new tuple under a lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from railfleet.core.config import Settings


logger = logging.getLogger(__name__)


class TenantMapping(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Accept the camelCase keys used by older TENANT_MAPPING deployments.
    external_id: str = Field(min_length=1, validation_alias=AliasChoices("external_id", "azureTenantId"))
    internal_id: str = Field(min_length=1, validation_alias=AliasChoices("internal_id", "dbTenantId"))
    name: str = ""


DEFAULT_TENANT_MAPPINGS: tuple[TenantMapping, ...] = (
    TenantMapping(
        external_id="71416bf2-04a4-4715-a8d2-6af239168e20",
        internal_id="default",
        name="Öresundståg",
    ),
)

_mapping_list = TypeAdapter(list[TenantMapping])


def parse_tenant_mappings(raw: str | None) -> tuple[TenantMapping, ...] | None:
    """Parse a JSON-encoded mapping list; None when unset or invalid."""
    if not raw or not raw.strip():
        return None
    try:
        return tuple(_mapping_list.validate_json(raw))
    except ValidationError as exc:
        logger.warning("tenant_mapping_parse_failed errors=%s", exc.error_count())
        return None


class TenantResolver:
    def __init__(
        self,
        mappings: Iterable[TenantMapping],
        *,
        default_tenant_id: str,
        super_admin_emails: Iterable[str],
    ) -> None:
        self._mappings: tuple[TenantMapping, ...] = tuple(mappings)
        self._default_tenant_id = default_tenant_id
        self._super_admins = frozenset(email.strip().lower() for email in super_admin_emails if email.strip())
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TenantResolver":
        override = parse_tenant_mappings(settings.tenant_mapping_json)
        if override is not None:
            logger.info("tenant_mappings_loaded source=env count=%s", len(override))
        mappings = override if override is not None else DEFAULT_TENANT_MAPPINGS
        return cls(
            mappings,
            default_tenant_id=settings.default_tenant_id,
            super_admin_emails=settings.super_admin_email_set,
        )

    @property
    def default_tenant_id(self) -> str:
        return self._default_tenant_id

    def mappings(self) -> tuple[TenantMapping, ...]:
        return self._mappings

    def is_super_admin(self, email: str | None) -> bool:
        return bool(email) and email.strip().lower() in self._super_admins

    def internal_id_for(self, external_tenant_id: str | None) -> str:
        for mapping in self._mappings:
            if mapping.external_id == external_tenant_id:
                return mapping.internal_id
        # Unknown tenants fall back to the default key instead of failing the request.
        logger.warning(
            "tenant_mapping_missing external_tenant_id=%s fallback=%s",
            external_tenant_id,
            self._default_tenant_id,
        )
        return self._default_tenant_id

    def tenant_name(self, internal_tenant_id: str) -> str:
        for mapping in self._mappings:
            if mapping.internal_id == internal_tenant_id:
                return mapping.name
        return "Unknown"

    def resolve(
        self,
        external_tenant_id: str | None,
        actor_email: str | None,
        requested_tenant_id: str | None = None,
    ) -> str:
        if self.is_super_admin(actor_email):
            tenant_id = requested_tenant_id or self._default_tenant_id
            logger.info("super_admin_tenant_access email=%s tenant_id=%s", actor_email, tenant_id)
            return tenant_id
        return self.internal_id_for(external_tenant_id)

    def add_or_update(self, mapping: TenantMapping) -> bool:
        """Upsert by external id; returns True when a new entry was added."""
        with self._lock:
            current = list(self._mappings)
            for idx, existing in enumerate(current):
                if existing.external_id == mapping.external_id:
                    current[idx] = mapping
                    self._mappings = tuple(current)
                    logger.info("tenant_mapping_updated external_id=%s", mapping.external_id)
                    return False
            current.append(mapping)
            self._mappings = tuple(current)
        logger.info("tenant_mapping_added external_id=%s", mapping.external_id)
        return True
