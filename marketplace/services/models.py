"""
Vue en lecture seule des participants d'un Service (client / développeur).
Les rôles sont toujours déduits des références stockées sur le Service,
jamais d'identifiants fournis par le client.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from marketplace.errors import Unauthorized


class Role(str, Enum):
    CLIENT = "client"
    DEVELOPER = "developer"


@dataclass(frozen=True)
class Participants:
    service_id: str
    client_id: str
    developer_id: Optional[str]
    title: str = ""

    def role_of(self, user_id: Optional[str]) -> Optional[Role]:
        if not user_id:
            return None
        if user_id == self.client_id:
            return Role.CLIENT
        if self.developer_id and user_id == self.developer_id:
            return Role.DEVELOPER
        return None

    def require_member(self, user_id: Optional[str]) -> Role:
        role = self.role_of(user_id)
        if role is None:
            raise Unauthorized(reason=f"user {user_id} is not a participant of service {self.service_id}")
        return role

    def require(self, user_id: Optional[str], role: Role) -> None:
        if self.role_of(user_id) != role:
            raise Unauthorized(reason=f"user {user_id} is not the {role.value} of service {self.service_id}")


def participants_from_rows(service: Dict[str, Any], application: Optional[Dict[str, Any]] = None) -> Participants:
    """
    Construit les participants à partir de la ligne 'services'.
    - developer: services.developer_id, sinon le développeur de la candidature acceptée.
    """
    developer_id = service.get("developer_id") or (application or {}).get("developer_id")
    return Participants(
        service_id=str(service.get("id")),
        client_id=str(service.get("client_id") or ""),
        developer_id=str(developer_id) if developer_id else None,
        title=service.get("title") or "",
    )
