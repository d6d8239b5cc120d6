"""
eventrecon: identity backfill and duplicate-Event reconciliation for the booking store.
"""
