# module marketplace.services.repository
"""
Lecture seule des Services et candidatures (gérés par une autre application).
"""
from typing import Any, Dict, Optional
import logging
from marketplace.infra.supabase_client import get_service_supabase

logger = logging.getLogger(__name__)

def get_service(service_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("services")
            .select("id, title, budget, category, client_id, developer_id, status")
            .eq("id", service_id)
            .limit(1)
            .execute()
        )
        data = res.data or []
        return data[0] if data else None
    except Exception:
        logger.exception("get_service failed for %s", service_id)
        return None

def get_accepted_application(service_id: str) -> Optional[Dict[str, Any]]:
    # Candidature retenue: sert à résoudre le développeur quand le Service n'en a pas encore
    try:
        res = (
            get_service_supabase()
            .table("applications")
            .select("id, service_id, developer_id, status, proposed_rate")
            .eq("service_id", service_id)
            .eq("status", "accepted")
            .limit(1)
            .execute()
        )
        data = res.data or []
        return data[0] if data else None
    except Exception:
        logger.exception("get_accepted_application failed for %s", service_id)
        return None
