"""
Gestionnaire des salons temps réel (un salon par Service).

- Le salon relaie l'état persisté, il n'en est jamais la source
- publish() est sérialisé par salon: chaque membre reçoit les événements dans l'ordre de publication
- Une connexion lente (timeout d'envoi) ou fermée est retirée sans erreur pour l'émetteur
- dedupe_key: une clé déjà publiée dans le salon n'est pas relayée une seconde fois
- Un salon vide sans diffusion en cours ne garde ni verrou ni historique
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from marketplace.config import REALTIME_DEDUPE_HISTORY, REALTIME_SEND_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


class ChannelManager:
    def __init__(
        self,
        send_timeout: float = REALTIME_SEND_TIMEOUT_SECONDS,
        dedupe_history: int = REALTIME_DEDUPE_HISTORY,
    ):
        self.send_timeout = send_timeout
        self.dedupe_history = dedupe_history
        self._senders: Dict[str, Sender] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._published: Dict[str, "OrderedDict[str, None]"] = {}
        self._publishers: Dict[str, int] = {}

    def register(self, connection_id: str, sender: Sender) -> None:
        self._senders[connection_id] = sender
        self._memberships.setdefault(connection_id, set())

    def unregister(self, connection_id: str) -> None:
        for service_id in list(self._memberships.get(connection_id, ())):
            self.leave(service_id, connection_id)
        self._memberships.pop(connection_id, None)
        self._senders.pop(connection_id, None)

    def join(self, service_id: str, connection_id: str) -> None:
        if connection_id not in self._senders:
            raise KeyError(f"connexion inconnue: {connection_id}")
        self._rooms.setdefault(service_id, set()).add(connection_id)
        self._memberships[connection_id].add(service_id)

    def leave(self, service_id: str, connection_id: str) -> None:
        members = self._rooms.get(service_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[service_id]
                self._forget_if_idle(service_id)
        self._memberships.get(connection_id, set()).discard(service_id)

    def members(self, service_id: str) -> Set[str]:
        return set(self._rooms.get(service_id, ()))

    def rooms(self) -> Dict[str, int]:
        return {service_id: len(members) for service_id, members in self._rooms.items()}

    def _already_published(self, service_id: str, dedupe_key: str) -> bool:
        history = self._published.setdefault(service_id, OrderedDict())
        if dedupe_key in history:
            return True
        history[dedupe_key] = None
        while len(history) > self.dedupe_history:
            history.popitem(last=False)
        return False

    async def _send(self, connection_id: str, frame: Dict[str, Any]) -> bool:
        sender = self._senders.get(connection_id)
        if sender is None:
            return False
        try:
            await asyncio.wait_for(sender(frame), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.debug("dropping connection %s: %s", connection_id, e)
            self.unregister(connection_id)
            return False

    async def publish(
        self,
        service_id: str,
        event: str,
        payload: Dict[str, Any],
        dedupe_key: Optional[str] = None,
    ) -> int:
        """Diffuse {event, data} aux membres du salon; retourne le nombre de livraisons réussies."""
        lock = self._room_locks.get(service_id)
        if lock is None:
            lock = self._room_locks[service_id] = asyncio.Lock()
        self._publishers[service_id] = self._publishers.get(service_id, 0) + 1
        try:
            async with lock:
                if dedupe_key is not None and self._already_published(service_id, dedupe_key):
                    logger.debug("duplicate %s %s suppressed in room %s", event, dedupe_key, service_id)
                    return 0
                frame = {"event": event, "data": payload}
                results = await asyncio.gather(
                    *(self._send(cid, frame) for cid in self.members(service_id))
                )
                return sum(1 for ok in results if ok)
        finally:
            self._publishers[service_id] -= 1
            if self._publishers[service_id] == 0:
                del self._publishers[service_id]
            self._forget_if_idle(service_id)

    def _forget_if_idle(self, service_id: str) -> None:
        # Salon vide et aucune diffusion en cours: verrou et historique sont libérés
        if service_id in self._rooms or service_id in self._publishers:
            return
        self._room_locks.pop(service_id, None)
        self._published.pop(service_id, None)

    def tracked_rooms(self) -> int:
        return len(self._room_locks.keys() | self._published.keys())


channels = ChannelManager()


def get_channels() -> ChannelManager:
    return channels
