"""
Module 'fees': point d'entrée public du calcul des commissions.
"""

from .calculator import MIN_AMOUNT, FeeBreakdown, calculate_fees, settlement_amount, to_money, UPFRONT_RATIO

__all__ = [
    "MIN_AMOUNT",
    "FeeBreakdown",
    "calculate_fees",
    "settlement_amount",
    "to_money",
    "UPFRONT_RATIO",
]
