"""
Bursa Refresh — tiered rotating refresh scheduler for Bursa Malaysia prices.
"""

__version__ = "1.0.0"
