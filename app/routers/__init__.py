"""API router package."""

from app.routers import internal, sweeps, transactions, vault, withdrawals

__all__ = [
    "internal",
    "sweeps",
    "transactions",
    "vault",
    "withdrawals",
]
