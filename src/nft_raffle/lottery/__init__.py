"""
Raffle core: round lifecycle, refund ledger, treasury and access gate
"""
