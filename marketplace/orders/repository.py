# module marketplace.orders.repository
"""
Accès Supabase à la table 'orders'.

Invariant: au plus une commande non terminale par Service.
Il est vérifié par l'orchestrateur puis garanti par l'index unique partiel
'orders_one_open_per_service'; une violation (23505) remonte en DuplicateOrder.
"""
from typing import Any, Dict, List, Optional
import logging

from postgrest.exceptions import APIError

from marketplace.errors import DuplicateOrder, StorageError
from marketplace.infra.supabase_client import get_service_supabase
from marketplace.orders.models import NON_TERMINAL_STATUSES, OrderStatus

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, service_id, message_id, title, description, price, platform_fee, total_amount, "
    "remaining_amount, delivery_time, revisions, payment_type, status, client_id, developer_id, "
    "gateway, remote_order_id, settlement, created_at, paid_at"
)


def _api_error_code(e: APIError) -> Optional[str]:
    code = getattr(e, "code", None)
    if not code and e.args and isinstance(e.args[0], dict):
        code = e.args[0].get("code")
    return code


def insert_order(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        res = get_service_supabase().table("orders").insert(payload).execute()
    except APIError as e:
        if _api_error_code(e) == "23505":
            raise DuplicateOrder(reason=f"open order already exists for service {payload.get('service_id')}")
        logger.exception("insert_order failed for service %s", payload.get("service_id"))
        raise StorageError(reason=f"insert_order: {e}")
    except Exception as e:
        logger.exception("insert_order failed for service %s", payload.get("service_id"))
        raise StorageError(reason=f"insert_order: {e}")
    if not res.data:
        raise StorageError(reason="insert_order: empty response")
    return res.data[0]


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS)
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        data = res.data or []
        return data[0] if data else None
    except Exception:
        logger.exception("get_order failed for %s", order_id)
        return None


def find_open_order(service_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS)
            .eq("service_id", service_id)
            .in_("status", [s.value for s in NON_TERMINAL_STATUSES])
            .limit(1)
            .execute()
        )
    except Exception as e:
        # Une lecture ratée ici conduirait à créer un doublon: on propage
        logger.exception("find_open_order failed for %s", service_id)
        raise StorageError(reason=f"find_open_order: {e}")
    data = res.data or []
    return data[0] if data else None


def list_service_orders(service_id: str) -> List[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS)
            .eq("service_id", service_id)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("list_service_orders failed for %s", service_id)
        return []


def update_order_status(
    order_id: str,
    *,
    expected: OrderStatus,
    new: OrderStatus,
    extra: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Compare-and-set du statut de commande; None si le statut courant n'est plus 'expected'."""
    payload: Dict[str, Any] = {"status": new.value}
    payload.update(extra or {})
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .update(payload)
            .eq("id", order_id)
            .eq("status", expected.value)
            .execute()
        )
    except Exception as e:
        logger.exception("update_order_status failed for %s", order_id)
        raise StorageError(reason=f"update_order_status: {e}")
    data = res.data or []
    return data[0] if data else None


def set_remote_order_id(order_id: str, remote_order_id: str, gateway: str) -> Optional[Dict[str, Any]]:
    """Enregistre la commande distante une seule fois (remote_order_id encore NULL, statut pending_payment)."""
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .update({"remote_order_id": remote_order_id, "gateway": gateway})
            .eq("id", order_id)
            .eq("status", OrderStatus.PENDING_PAYMENT.value)
            .is_("remote_order_id", "null")
            .execute()
        )
    except Exception as e:
        logger.exception("set_remote_order_id failed for %s", order_id)
        raise StorageError(reason=f"set_remote_order_id: {e}")
    data = res.data or []
    return data[0] if data else None


def record_unmatched_settlement(order_id: str, settlement: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Conserve une capture dont le montant ne correspond pas à la commande.
    La commande reste pending_payment; la régularisation est manuelle.
    """
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .update({"settlement": settlement})
            .eq("id", order_id)
            .eq("status", OrderStatus.PENDING_PAYMENT.value)
            .is_("settlement", "null")
            .execute()
        )
    except Exception as e:
        logger.exception("record_unmatched_settlement failed for %s", order_id)
        raise StorageError(reason=f"record_unmatched_settlement: {e}")
    data = res.data or []
    return data[0] if data else None
