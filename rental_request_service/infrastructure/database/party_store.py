# Party Directory backed by the users, units and buildings collections
import logging
import datetime
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from rental_request_service.app.models import (
    UserDB, UserRole, UnitDB, UnitStatus, UnitRequestStats, BuildingDB, RequestType,
)
from rental_request_service.app.service.interfaces.party_directory import AbstractPartyDirectory
from rental_request_service.app.service.exceptions import PartyNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class MongoPartyDirectory(AbstractPartyDirectory):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[UserDB]:
        doc = await self.db.users.find_one({"id": user_id})
        return UserDB(**doc) if doc else None

    async def get_unit(self, unit_id: str) -> Optional[UnitDB]:
        doc = await self.db.units.find_one({"id": unit_id})
        return UnitDB(**doc) if doc else None

    async def get_building(self, building_id: str) -> Optional[BuildingDB]:
        doc = await self.db.buildings.find_one({"id": building_id})
        return BuildingDB(**doc) if doc else None

    async def list_staff(self) -> List[UserDB]:
        cursor = self.db.users.find({"role": UserRole.ADMIN.value, "is_active": True})
        return [UserDB(**doc) async for doc in cursor]

    async def promote_user_role(self, user_id: str, from_role: str, to_role: str) -> bool:
        result = await self.db.users.update_one(
            {"id": user_id, "role": from_role},
            {"$set": {"role": to_role}},
        )
        if result.modified_count:
            logger.info(f"User {user_id} promoted from {from_role} to {to_role}.")
            return True
        logger.debug(f"User {user_id} not promoted: not in role {from_role}.")
        return False

    async def assign_unit_occupancy(self, unit_id: str, request_type: str, occupant_id: str) -> UnitDB:
        now = datetime.datetime.now(datetime.UTC)
        if request_type == RequestType.LEASE.value:
            update = {"tenant_id": occupant_id, "status": UnitStatus.RENTED.value, "updated_at": now}
        elif request_type == RequestType.PURCHASE.value:
            update = {"owner_id": occupant_id, "tenant_id": None, "status": UnitStatus.SOLD.value, "updated_at": now}
        else:
            raise ValidationError(f"Request type '{request_type}' does not assign unit occupancy.")

        result = await self.db.units.update_one({"id": unit_id}, {"$set": update})
        if result.matched_count == 0:
            raise PartyNotFoundError("unit", unit_id)
        logger.info(f"Unit {unit_id} occupancy updated for {request_type}: occupant {occupant_id}.")
        return await self.get_unit(unit_id)

    async def set_unit_request_stats(self, unit_id: str, stats: UnitRequestStats) -> None:
        await self.db.units.update_one({"id": unit_id}, {"$set": {"request_stats": stats.model_dump()}})
        logger.debug(f"Request stats set on unit {unit_id}: {stats.model_dump()}")
