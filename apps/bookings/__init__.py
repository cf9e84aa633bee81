"""Bookings app package.

This app holds the reservation lifecycle: the booking aggregate and its
state machine, availability checks under the room lock and the cancellation
policy. Overlapping stays are also refused by an exclusion constraint when
the database supports one.
"""
