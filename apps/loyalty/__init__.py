"""Loyalty app package.

This app keeps the points ledger of each guest: points earned on paid
bookings, redemptions against a booking, admin adjustments and the tier
derived from lifetime spending. The cached balance is audited against the
ledger every night.
"""
