"""
Taxonomie des erreurs métier du moteur de négociation/paiement.

Chaque erreur porte:
- status_code: code HTTP renvoyé par le handler (app_setup.exceptions)
- code: identifiant stable pour le front (ex: "already_handled")
- detail: message affichable à l'utilisateur
- retryable: l'action peut être relancée par l'utilisateur (jamais automatiquement)
"""
from typing import Optional


class MarketplaceError(Exception):
    status_code = 400
    code = "error"
    default_detail = "Requête invalide"
    retryable = False

    def __init__(self, detail: Optional[str] = None, *, reason: Optional[str] = None):
        self.detail = detail or self.default_detail
        # Raison technique (logs), jamais affichée telle quelle
        self.reason = reason or self.detail
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, "retryable": self.retryable}


class Unauthorized(MarketplaceError):
    status_code = 403
    code = "permission_denied"
    default_detail = "Vous n'avez pas la permission d'effectuer cette action"


class InvalidTransition(MarketplaceError):
    status_code = 409
    code = "already_handled"
    default_detail = "Cette demande a déjà été traitée"


class NotFound(MarketplaceError):
    status_code = 404
    code = "not_found"
    default_detail = "Ressource introuvable"


class DuplicateOrder(MarketplaceError):
    status_code = 409
    code = "duplicate_order"
    default_detail = "Une commande est déjà en cours pour ce service"


class GatewayError(MarketplaceError):
    """Échec du processeur de paiement: le détail reprend la raison fournie par le processeur."""
    status_code = 502
    code = "gateway_error"
    default_detail = "Le paiement n'a pas pu être finalisé, veuillez réessayer"
    retryable = True


class StorageError(MarketplaceError):
    status_code = 503
    code = "storage_error"
    default_detail = "Service momentanément indisponible, veuillez réessayer"
    retryable = True


class SettlementMismatch(GatewayError):
    """Fonds capturés pour un montant différent de la commande: régularisation manuelle."""
    code = "settlement_mismatch"
    default_detail = "Le montant réglé ne correspond pas à la commande, le support va vérifier le paiement"
    retryable = False


class InvalidAmount(MarketplaceError, ValueError):
    status_code = 422
    code = "invalid_amount"
    default_detail = "Le montant doit être d'au moins 0,01"
