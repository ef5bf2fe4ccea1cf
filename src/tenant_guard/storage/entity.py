"""Tenant-aware entity definitions.

Entities are pydantic models persisted as documents. ``tenant_entity``
gives a model the ``tenantId`` field when it does not declare one, and
``EntityDefinition`` records the collection name plus the index set every
tenant-scoped collection needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, create_model
from pymongo import ASCENDING, DESCENDING

from tenant_guard.storage.filters import TENANT_FIELD

IndexKeys = list[tuple[str, int]]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TenantDocument(BaseModel):
    """Base for persisted entities.

    Attributes use snake_case; the stored documents use camelCase aliases
    (``tenantId``, ``createdAt``, ``updatedAt``) and ``_id``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Any | None = Field(default=None, alias="_id")
    tenant_id: str | None = Field(default=None, alias=TENANT_FIELD)
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=_utcnow, alias="updatedAt")


def to_document(entity: BaseModel) -> dict[str, Any]:
    """Serialize *entity* with aliases, omitting an unset ``_id`` and tenant."""
    document = entity.model_dump(by_alias=True)
    for key in ("_id", TENANT_FIELD):
        if document.get(key) is None:
            document.pop(key, None)
    return document


def declares_tenant_field(model: type[BaseModel]) -> bool:
    return any(
        name == "tenant_id" or info.alias == TENANT_FIELD
        for name, info in model.model_fields.items()
    )


def tenant_entity(model: type[ModelT]) -> type[ModelT]:
    """Return *model* with a ``tenant_id``/``tenantId`` field.

    Models that already declare the field come back unchanged; others
    are subclassed with the field added.
    """
    if declares_tenant_field(model):
        return model
    extended: type[ModelT] = create_model(  # type: ignore[call-overload]
        model.__name__,
        __base__=model,
        __module__=model.__module__,
        tenant_id=(str | None, Field(default=None, alias=TENANT_FIELD)),
    )
    return extended


@dataclass(frozen=True)
class IndexSpec:
    """One index to create on a collection."""

    keys: IndexKeys
    unique: bool = False
    sparse: bool = False

    @property
    def name(self) -> str:
        return "_".join(f"{key}_{direction}" for key, direction in self.keys)


BASE_TENANT_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec([(TENANT_FIELD, ASCENDING)]),
    IndexSpec([(TENANT_FIELD, ASCENDING), ("createdAt", DESCENDING)]),
    IndexSpec([(TENANT_FIELD, ASCENDING), ("updatedAt", DESCENDING)]),
)


def tenant_indexes(unique_per_tenant: tuple[str, ...] = ()) -> list[IndexSpec]:
    """Base tenant indexes plus unique sparse ``(tenantId, field)`` indexes."""
    specs = list(BASE_TENANT_INDEXES)
    specs.extend(
        IndexSpec([(TENANT_FIELD, ASCENDING), (name, ASCENDING)], unique=True, sparse=True)
        for name in unique_per_tenant
    )
    return specs


@dataclass(frozen=True)
class EntityDefinition(Generic[ModelT]):
    """A tenant-scoped entity type bound to its collection."""

    model: type[ModelT]
    collection: str
    unique_per_tenant: tuple[str, ...] = ()
    indexes: list[IndexSpec] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", tenant_entity(self.model))
        object.__setattr__(self, "indexes", tenant_indexes(self.unique_per_tenant))
