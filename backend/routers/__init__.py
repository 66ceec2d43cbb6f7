"""API routers."""
from backend.routers import matches, wallet, settlement, health

__all__ = [
    "matches",
    "wallet",
    "settlement",
    "health",
]
