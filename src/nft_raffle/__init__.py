"""
NFT Raffle
Recurring fixed-fee raffle with a collectible prize, refund ledger and treasury
"""

__version__ = "1.0.0"
