"""Wallet session, transfers and settlement.

Holds the unlocked session, builds and broadcasts native and ERC-20
transfers, follows each one until it settles, and keeps the pending set,
reconciled history and balances consistent with the chain.
"""
