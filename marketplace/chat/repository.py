# module marketplace.chat.repository
"""
Accès Supabase au journal de chat (tables messages et payment_requests).

- Lectures: None / [] en cas d'échec (journalisé), l'appelant traduit en NotFound.
- Écritures: StorageError en cas d'échec, jamais d'écriture partielle silencieuse.
- Le statut d'une demande de paiement se met à jour en compare-and-set (WHERE status = attendu):
  un écrivain concurrent qui perd la course reçoit None.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from marketplace.errors import StorageError
from marketplace.infra.supabase_client import get_service_supabase

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = (
    "id, service_id, sender_id, kind, text, created_at, "
    "payment_requests(id, message_id, service_id, amount, payment_type, status, order_id, "
    "title, description, delivery_time, revisions)"
)
PAYMENT_REQUEST_COLUMNS = (
    "id, message_id, service_id, amount, payment_type, status, order_id, "
    "title, description, delivery_time, revisions"
)


def insert_message(service_id: str, sender_id: str, text: str) -> Dict[str, Any]:
    try:
        res = (
            get_service_supabase()
            .table("messages")
            .insert({
                "service_id": service_id,
                "sender_id": sender_id,
                "kind": "text",
                "text": text,
            })
            .execute()
        )
    except Exception as e:
        logger.exception("insert_message failed for service %s", service_id)
        raise StorageError(reason=f"insert_message: {e}")
    if not res.data:
        raise StorageError(reason="insert_message: empty response")
    row = dict(res.data[0])
    row.setdefault("payment_requests", [])
    return row


def insert_payment_request_message(
    *,
    service_id: str,
    sender_id: str,
    text: str,
    amount: Decimal,
    payment_type: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    delivery_time: Optional[int] = None,
    revisions: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Message + PaymentDetails 'pending' écrits dans une seule transaction
    (fonction SQL create_payment_request_message, cf. supabase/schema.sql).
    Retourne la ligne message avec sa demande embarquée.
    """
    try:
        res = (
            get_service_supabase()
            .rpc("create_payment_request_message", {
                "p_service_id": service_id,
                "p_sender_id": sender_id,
                "p_text": text,
                "p_amount": str(amount),
                "p_payment_type": payment_type,
                "p_title": title,
                "p_description": description,
                "p_delivery_time": delivery_time,
                "p_revisions": revisions,
            })
            .execute()
        )
    except Exception as e:
        logger.exception("insert_payment_request_message failed for service %s", service_id)
        raise StorageError(reason=f"insert_payment_request_message: {e}")
    message_id = res.data
    if isinstance(message_id, list):
        message_id = message_id[0] if message_id else None
    if isinstance(message_id, dict):
        message_id = message_id.get("id") or message_id.get("create_payment_request_message")
    row = get_message(str(message_id)) if message_id else None
    if not row:
        raise StorageError(reason="insert_payment_request_message: message not readable after insert")
    return row


def get_message(message_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("messages")
            .select(MESSAGE_COLUMNS)
            .eq("id", message_id)
            .limit(1)
            .execute()
        )
        data = res.data or []
        return data[0] if data else None
    except Exception:
        logger.exception("get_message failed for %s", message_id)
        return None


def _order_key(row: Dict[str, Any]):
    return (str(row.get("created_at") or ""), str(row.get("id") or ""))


def list_messages(service_id: str, after: Optional[Dict[str, Any]] = None, limit: int = 500) -> List[Dict[str, Any]]:
    """
    Messages d'un Service, ordonnés (created_at, id).
    - after: ligne du dernier message connu du client; seuls les suivants sont renvoyés.
      Le filtre SQL est large (>=) puis affiné ici pour départager les égalités d'horodatage.
    """
    try:
        query = (
            get_service_supabase()
            .table("messages")
            .select(MESSAGE_COLUMNS)
            .eq("service_id", service_id)
        )
        if after:
            query = query.gte("created_at", after["created_at"])
        res = query.order("created_at").order("id").limit(limit).execute()
        rows = res.data or []
    except Exception:
        logger.exception("list_messages failed for %s", service_id)
        return []
    rows = sorted(rows, key=_order_key)
    if after:
        cursor = _order_key(after)
        rows = [r for r in rows if _order_key(r) > cursor]
    return rows


def update_payment_request_status(
    details_id: str,
    *,
    expected: str,
    new: str,
    order_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Compare-and-set du statut: ne modifie la ligne que si son statut vaut 'expected'.
    Retourne la ligne mise à jour, ou None si la transition a été perdue.
    """
    payload: Dict[str, Any] = {"status": new}
    if order_id is not None:
        payload["order_id"] = order_id
    try:
        res = (
            get_service_supabase()
            .table("payment_requests")
            .update(payload)
            .eq("id", details_id)
            .eq("status", expected)
            .execute()
        )
    except Exception as e:
        logger.exception("update_payment_request_status failed for %s", details_id)
        raise StorageError(reason=f"update_payment_request_status: {e}")
    data = res.data or []
    return data[0] if data else None


def list_payment_requests_for_order(order_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        query = (
            get_service_supabase()
            .table("payment_requests")
            .select(PAYMENT_REQUEST_COLUMNS)
            .eq("order_id", order_id)
        )
        if status:
            query = query.eq("status", status)
        res = query.execute()
        return res.data or []
    except Exception:
        logger.exception("list_payment_requests_for_order failed for %s", order_id)
        return []
