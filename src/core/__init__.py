"""Core package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from core.galaswap_client import GalaSwapClient

__all__ = [
    'GalaSwapClient',
    'GasBiddingEngine',
    'LiquidityFilter',
]
