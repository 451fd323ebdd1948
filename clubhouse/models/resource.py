"""Resource catalog model.

A Resource is one bookable facility unit: a guest room, a hall, a lawn or a
photography studio. The catalog itself is maintained elsewhere; the engine
only reads it, apart from the two derived flags it keeps in sync.
"""

import enum

from sqlalchemy import Boolean, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models.base import Base, TimestampMixin, enum_values


class ResourceKind(enum.StrEnum):
    ROOM = "ROOM"
    HALL = "HALL"
    LAWN = "LAWN"
    STUDIO = "STUDIO"

    @property
    def is_lodging(self) -> bool:
        return self is ResourceKind.ROOM

    @property
    def checks_capacity(self) -> bool:
        return self in (ResourceKind.HALL, ResourceKind.LAWN)


resource_kind_enum = Enum(ResourceKind, name="resource_kind", values_callable=enum_values)


class Resource(TimestampMixin, Base):
    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[ResourceKind] = mapped_column(resource_kind_enum, nullable=False)
    # Unit type for lodging (e.g. "Deluxe"), lawn/hall category for venues
    category: Mapped[str | None] = mapped_column(String(100))
    unit_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    capacity_min: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    capacity_max: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Rates in minor currency units: per night for lodging, per (day, slot) for venues
    member_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    guest_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Derived flags, recomputed wholesale by services.occupancy.refresh_resource_flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_reserved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_resources_kind_category", "kind", "category", "unit_number"),)

    def __repr__(self) -> str:
        return f"<Resource {self.kind.value} {self.name}>"
