"""
Calcul des commissions plateforme (logique pure, pas de DB, pas de passerelle).

Modèle canonique: le client paie la commission.
- platform_fee = montant × taux (arrondi au centime, ROUND_HALF_UP)
- developer_receives = montant
- client_total = montant + platform_fee
Le même calcul sert à l'affichage dans le chat et à la création des commandes.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple, Union

from marketplace.config import PLATFORM_FEE_RATE
from marketplace.errors import InvalidAmount

CENT = Decimal("0.01")
# Plus petit montant négociable
MIN_AMOUNT = CENT

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Convertit en Decimal arrondi au centime (float converti via str pour éviter 0.1+0.2)."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeBreakdown:
    amount: Decimal
    platform_fee: Decimal
    developer_receives: Decimal
    client_total: Decimal

    def as_dict(self) -> dict:
        return {
            "amount": float(self.amount),
            "platformFee": float(self.platform_fee),
            "developerReceives": float(self.developer_receives),
            "clientTotal": float(self.client_total),
        }


def calculate_fees(amount: Number, rate: Number = PLATFORM_FEE_RATE) -> FeeBreakdown:
    base = to_money(amount)
    if base <= 0:
        raise InvalidAmount(reason=f"amount {amount!r} rounds to {base}")
    fee = (base * Decimal(str(rate))).quantize(CENT, rounding=ROUND_HALF_UP)
    return FeeBreakdown(
        amount=base,
        platform_fee=fee,
        developer_receives=base,
        client_total=base + fee,
    )


# Part du montant réglée lors de la capture initiale, par type de paiement
UPFRONT_RATIO = {
    "half_upfront": Decimal("0.5"),
    "full_upfront": Decimal("1"),
    # Réglé en une fois; le moment (à la livraison) relève du workflow de livraison
    "on_completion": Decimal("1"),
}


def settlement_amount(amount: Number, payment_type: str) -> Tuple[Decimal, Decimal]:
    """
    Découpe un montant négocié en (dû maintenant, reste dû plus tard).
    - half_upfront: 50% maintenant, le reste à la livraison
    - full_upfront / on_completion: tout en une seule capture
    """
    base = to_money(amount)
    try:
        ratio = UPFRONT_RATIO[getattr(payment_type, "value", payment_type)]
    except KeyError:
        raise ValueError(f"Type de paiement inconnu: {payment_type}")
    due_now = (base * ratio).quantize(CENT, rounding=ROUND_HALF_UP)
    return due_now, base - due_now
