"""Stored-value gift card ledger.

Gift cards move through INACTIVE -> ACTIVE -> REDEEMED/EXPIRED, with
cancellation and reactivation, and every balance-affecting operation is
recorded as an immutable ledger entry.
"""
