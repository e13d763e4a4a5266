from abc import ABC, abstractmethod
from typing import List, Optional

from rental_request_service.app.models import UserDB, UnitDB, BuildingDB, UnitRequestStats


class AbstractPartyDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserDB]:
        pass

    @abstractmethod
    async def get_unit(self, unit_id: str) -> Optional[UnitDB]:
        pass

    @abstractmethod
    async def get_building(self, building_id: str) -> Optional[BuildingDB]:
        pass

    @abstractmethod
    async def list_staff(self) -> List[UserDB]:
        """Active staff members (admins), used for fan-out and as fallback counterparty."""
        pass

    @abstractmethod
    async def promote_user_role(self, user_id: str, from_role: str, to_role: str) -> bool:
        """Moves a user from from_role to to_role. Returns False if the user was not in from_role."""
        pass

    @abstractmethod
    async def assign_unit_occupancy(self, unit_id: str, request_type: str, occupant_id: str) -> UnitDB:
        """Sets the unit's tenant or owner according to the request type."""
        pass

    @abstractmethod
    async def set_unit_request_stats(self, unit_id: str, stats: UnitRequestStats) -> None:
        pass
