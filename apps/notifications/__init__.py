"""Notifications app package.

Domain events are turned into outbox rows; a Celery task relays them by
email and keeps failed deliveries visible for retry.
"""
