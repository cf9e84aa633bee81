"""Finances app package.

This app contains the payment transactions of bookings: gateway intents,
signed webhook processing, reconciliation of stale intents and refunds.
"""
