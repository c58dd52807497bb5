# services/session_registry.py
"""
One `PortfolioStateCoordinator` per owner for long-lived processes (the API).

Each coordinator serves exactly one owner, so the registry is what keeps
owners apart when several of them are active in the same process.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict

from portfolio_tracker.services.portfolio_state import PortfolioStateCoordinator
from portfolio_tracker.services.repository import LedgerRepository

logger = logging.getLogger(__name__)


class CoordinatorRegistry:
    def __init__(self, repository: LedgerRepository):
        self._repo = repository
        self._coordinators: Dict[int, PortfolioStateCoordinator] = {}
        self._guard = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._coordinators)

    async def get(self, owner_id: int) -> PortfolioStateCoordinator:
        async with self._guard:
            coordinator = self._coordinators.get(owner_id)
            if coordinator is None:
                coordinator = PortfolioStateCoordinator(self._repo)
                await coordinator.set_owner(owner_id)
                self._coordinators[owner_id] = coordinator
                logger.info("coordinator opened owner_id=%s active=%d", owner_id, len(self._coordinators))
            return coordinator

    async def close(self, owner_id: int) -> None:
        async with self._guard:
            coordinator = self._coordinators.pop(owner_id, None)
        if coordinator is not None:
            await coordinator.logout()
            logger.info("coordinator closed owner_id=%s active=%d", owner_id, len(self._coordinators))

    async def shutdown(self) -> None:
        async with self._guard:
            coordinators = list(self._coordinators.values())
            self._coordinators.clear()
        for coordinator in coordinators:
            await coordinator.logout()
        if coordinators:
            logger.info("closed %d portfolio coordinators", len(coordinators))
