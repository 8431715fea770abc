"""
tifbot: time-in-force limit orders against AMM liquidity pools.
"""

__version__ = "0.3.0"
