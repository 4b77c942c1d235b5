from marketledger.models.base import Base
from marketledger.models.balance import UserBalance
from marketledger.models.transaction import TokenTransaction
from marketledger.models.market import Market, MarketOption
from marketledger.models.commitment import Commitment
from marketledger.models.resolution import MarketResolution, PayoutDistribution

__all__ = [
    "Base",
    "UserBalance",
    "TokenTransaction",
    "Market",
    "MarketOption",
    "Commitment",
    "MarketResolution",
    "PayoutDistribution",
]
