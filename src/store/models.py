"""
SQLAlchemy ORM tables for users, farms, fields and farmer profiles.
"""

import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.farmdata.models import IrrigationMethod


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String)
    phone: Mapped[Optional[str]] = mapped_column(String)
    # Free text, e.g. "560001 (12.9716,77.5946)"
    location: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    farmer_profile: Mapped[Optional["FarmerProfile"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan",
    )
    farms: Mapped[List["Farm"]] = relationship(
        back_populates="user", order_by="Farm.created_at", cascade="all, delete-orphan",
    )


class Farm(Base):
    __tablename__ = "farms"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[str] = mapped_column(String, default="")
    area: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))

    user: Mapped[User] = relationship(back_populates="farms")
    fields: Mapped[List["FarmField"]] = relationship(
        back_populates="farm", order_by="FarmField.created_at", cascade="all, delete-orphan",
    )


class FarmField(Base):
    __tablename__ = "fields"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    # GeoJSON geometry serialized as text; ring points are [lon, lat]
    coordinates: Mapped[str] = mapped_column(Text)
    crop_type: Mapped[Optional[str]] = mapped_column(String)
    area: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    farm_id: Mapped[str] = mapped_column(ForeignKey("farms.id", ondelete="CASCADE"))

    farm: Mapped[Farm] = relationship(back_populates="fields")


class FarmerProfile(Base):
    __tablename__ = "farmer_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    crop_name: Mapped[str] = mapped_column(String)
    soil_type: Mapped[str] = mapped_column(String)
    sowing_date: Mapped[date] = mapped_column(Date)
    has_storage_capacity: Mapped[bool] = mapped_column(Boolean, default=False)
    storage_capacity: Mapped[Optional[float]] = mapped_column(Float)
    irrigation_method: Mapped[IrrigationMethod] = mapped_column(
        Enum(IrrigationMethod, name="irrigation_method", values_callable=lambda e: [m.value for m in e]),
    )
    farming_experience: Mapped[Optional[int]] = mapped_column(Integer)
    farm_size: Mapped[Optional[float]] = mapped_column(Float)
    previous_yield: Mapped[Optional[float]] = mapped_column(Float)
    preferred_language: Mapped[Optional[str]] = mapped_column(String, default="en")
    is_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True)

    user: Mapped[User] = relationship(back_populates="farmer_profile")


PROFILE_FIELDS = (
    "crop_name",
    "soil_type",
    "sowing_date",
    "has_storage_capacity",
    "storage_capacity",
    "irrigation_method",
    "farming_experience",
    "farm_size",
    "previous_yield",
    "preferred_language",
    "is_onboarding_complete",
)
