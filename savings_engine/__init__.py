"""
Savings Engine

The monthly execution and allocation-funding engine of a multi-asset
crypto savings tracker.

DESIGN PRINCIPLES:
1. Only one month is ever in flight
2. Requirements are frozen when a month starts
3. Progress is replayed from the ledger, never accumulated
4. Every transition can be undone within a fixed window
5. Storage and market data are swappable collaborators
"""

__version__ = "1.0.0"
