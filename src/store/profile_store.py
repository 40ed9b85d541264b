"""
Async SQLAlchemy profile store.

Every method opens its own session, so one store instance can be shared by
concurrent requests. Results are returned as plain records (see
src.farmdata.models), never as ORM instances bound to a session.
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from src.farmdata.errors import RecordNotFoundError
from src.farmdata.models import (
    FarmerProfileRecord, FarmRecord, FieldRecord, IrrigationMethod, UserRecord,
)
from src.store.models import PROFILE_FIELDS, Base, Farm, FarmerProfile, FarmField, User

logger = logging.getLogger(__name__)


def _engine_kwargs(database_url: str) -> Dict[str, Any]:
    # In-memory SQLite lives in a single connection; share it across sessions
    if database_url.startswith("sqlite") and (":memory:" in database_url or database_url.endswith("://")):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {}


def _placeholder_email(user_id: str) -> str:
    return f"{user_id}@temp.com"


def _coerce_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def _coerce_profile_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Keep known profile columns and convert dates/enums to column types."""
    values = {}
    for key, value in fields.items():
        if key not in PROFILE_FIELDS:
            logger.debug("Ignoring unknown profile field '%s'", key)
            continue
        if key == "sowing_date":
            value = _coerce_date(value)
        elif key == "irrigation_method" and value is not None:
            value = IrrigationMethod(value)
        values[key] = value
    return values


def _profile_record(profile: FarmerProfile) -> FarmerProfileRecord:
    method = profile.irrigation_method
    return FarmerProfileRecord(
        user_id=profile.user_id,
        crop_name=profile.crop_name,
        soil_type=profile.soil_type,
        sowing_date=profile.sowing_date,
        has_storage_capacity=bool(profile.has_storage_capacity),
        irrigation_method=method.value if isinstance(method, IrrigationMethod) else method,
        storage_capacity=profile.storage_capacity,
        farming_experience=profile.farming_experience,
        farm_size=profile.farm_size,
        previous_yield=profile.previous_yield,
        preferred_language=profile.preferred_language or "en",
        is_onboarding_complete=bool(profile.is_onboarding_complete),
        created_at=profile.created_at,
        updated_at=profile.updated_at,
    )


def _user_record(user: User, with_relations: bool = True) -> UserRecord:
    record = UserRecord(
        id=user.id,
        email=user.email,
        name=user.name,
        phone=user.phone,
        location=user.location,
    )
    if with_relations:
        if user.farmer_profile is not None:
            record.profile = _profile_record(user.farmer_profile)
        record.farms = [
            FarmRecord(
                id=farm.id,
                name=farm.name,
                fields=[
                    FieldRecord(
                        id=f.id, name=f.name, coordinates=f.coordinates,
                        crop_type=f.crop_type, area=f.area,
                    )
                    for f in farm.fields
                ],
            )
            for farm in user.farms
        ]
    return record


class SqlProfileStore:
    """ProfileStore backed by any async SQLAlchemy URL (default: aiosqlite)."""

    def __init__(self, database_url: str, engine: Optional[AsyncEngine] = None, echo: bool = False):
        self.engine = engine or create_async_engine(database_url, echo=echo, **_engine_kwargs(database_url))
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self):
        """Create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def aclose(self):
        await self.engine.dispose()

    # ---- Reads ----

    async def get_user_with_profile_and_fields(self, user_id: str) -> Optional[UserRecord]:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .options(
                selectinload(User.farmer_profile),
                selectinload(User.farms).selectinload(Farm.fields),
            )
        )
        async with self._sessions() as session:
            user = (await session.execute(stmt)).scalar_one_or_none()
            if user is None:
                return None
            return _user_record(user)

    async def get_farmer_profile(self, user_id: str) -> Optional[FarmerProfileRecord]:
        async with self._sessions() as session:
            profile = (
                await session.execute(select(FarmerProfile).where(FarmerProfile.user_id == user_id))
            ).scalar_one_or_none()
            return _profile_record(profile) if profile is not None else None

    # ---- Writes ----

    async def upsert_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        location: Optional[str] = None,
    ) -> UserRecord:
        """Create the user or update the supplied (non-None) attributes."""
        changes = {k: v for k, v in {"name": name, "phone": phone, "location": location}.items() if v is not None}
        async with self._sessions() as session:
            async with session.begin():
                user = await session.get(User, user_id)
                if user is None:
                    user = User(id=user_id, email=_placeholder_email(user_id), **changes)
                    session.add(user)
                else:
                    for key, value in changes.items():
                        setattr(user, key, value)
            return _user_record(user, with_relations=False)

    async def upsert_farmer_profile(self, user_id: str, fields: Dict[str, Any]) -> FarmerProfileRecord:
        """
        Create the profile if absent (marked onboarding-complete), otherwise
        merge ``fields`` into it and refresh ``updated_at``.

        A placeholder user row is created when the user does not exist yet.
        """
        values = _coerce_profile_fields(fields)
        async with self._sessions() as session:
            async with session.begin():
                profile = (
                    await session.execute(select(FarmerProfile).where(FarmerProfile.user_id == user_id))
                ).scalar_one_or_none()

                if profile is None:
                    if await session.get(User, user_id) is None:
                        session.add(User(id=user_id, email=_placeholder_email(user_id)))
                        await session.flush()
                    values["is_onboarding_complete"] = True
                    profile = FarmerProfile(user_id=user_id, **values)
                    session.add(profile)
                    logger.info("Creating farmer profile for user %s", user_id)
                else:
                    for key, value in values.items():
                        setattr(profile, key, value)
                    profile.updated_at = datetime.now(timezone.utc)
                    logger.info("Updating farmer profile for user %s", user_id)
            return _profile_record(profile)

    async def create_farm(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        area: Optional[float] = None,
    ) -> FarmRecord:
        """Register a farm for an existing user; raises RecordNotFoundError otherwise."""
        async with self._sessions() as session:
            async with session.begin():
                if await session.get(User, user_id) is None:
                    raise RecordNotFoundError("User", user_id)
                farm = Farm(user_id=user_id, name=name, description=description, location=location or "", area=area)
                session.add(farm)
            logger.info("Created farm %s for user %s", farm.id, user_id)
            return FarmRecord(id=farm.id, name=farm.name)

    async def add_field(
        self,
        farm_id: str,
        name: str,
        geometry: Union[str, Dict[str, Any]],
        crop_type: Optional[str] = None,
        area: Optional[float] = None,
    ) -> FieldRecord:
        """Register a field boundary; ``geometry`` is a GeoJSON dict or its JSON text."""
        coordinates = geometry if isinstance(geometry, str) else json.dumps(geometry)
        async with self._sessions() as session:
            async with session.begin():
                if await session.get(Farm, farm_id) is None:
                    raise RecordNotFoundError("Farm", farm_id)
                field = FarmField(farm_id=farm_id, name=name, coordinates=coordinates, crop_type=crop_type, area=area)
                session.add(field)
            return FieldRecord(
                id=field.id, name=field.name, coordinates=field.coordinates,
                crop_type=field.crop_type, area=field.area,
            )
