from abc import ABC, abstractmethod
from typing import Optional


class AbstractNotifier(ABC):
    @abstractmethod
    async def notify(
        self,
        user_id: str,
        category: str,
        title: str,
        body: str,
        request_id: Optional[str],
        dedupe_key: str,
    ) -> bool:
        """
        Delivers a user-facing notice and bumps the user's unread counter.

        Delivering the same dedupe_key twice stores one notice and counts it once.

        Returns:
            True if the notice was newly stored, False if it was already there.
        """
        pass
