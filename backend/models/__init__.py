"""Database models."""
from backend.models.user import User
from backend.models.wallet_balance import WalletBalance
from backend.models.transaction import Transaction
from backend.models.match import Match
from backend.models.match_participant import MatchParticipant
from backend.models.match_activity import MatchActivity

__all__ = [
    "User",
    "WalletBalance",
    "Transaction",
    "Match",
    "MatchParticipant",
    "MatchActivity",
]
