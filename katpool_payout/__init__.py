"""
Katpool payout service: connects to a Kaspa node and runs scheduled balance transfers.
"""

__version__ = "0.1.0"
