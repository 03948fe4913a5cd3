"""
Verrou de sérialisation par Service (un asyncio.Lock par clé, compté par référence).

Toutes les opérations mutantes d'un même Service passent par ce verrou; les verrous
inutilisés sont libérés pour ne pas accumuler une entrée par Service jamais revu.
Le compare-and-set en base couvre les écrivains d'autres processus.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List


class ServiceLocks:
    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, service_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(service_id)
        if lock is None:
            lock = self._locks[service_id] = asyncio.Lock()
        self._users[service_id] = self._users.get(service_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[service_id] -= 1
            if self._users[service_id] == 0:
                del self._users[service_id]
                del self._locks[service_id]

    def held(self) -> List[str]:
        return [key for key, lock in self._locks.items() if lock.locked()]

    def __len__(self) -> int:
        return len(self._locks)
