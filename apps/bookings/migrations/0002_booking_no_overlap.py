"""Database-level guard against overlapping active bookings of a room.

PostgreSQL only: an exclusion constraint over the half-open date range.
Other backends rely on the per-room row lock taken by the application.
"""

from django.db import migrations

CONSTRAINT_NAME = "booking_no_overlapping_active_stays"


def add_exclusion_constraint(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    schema_editor.execute(
        f"""
        ALTER TABLE bookings_booking
        ADD CONSTRAINT {CONSTRAINT_NAME}
        EXCLUDE USING gist (
            room_id WITH =,
            daterange(check_in, check_out, '[)') WITH &&
        )
        WHERE (status NOT IN ('cancelled', 'no_show'))
        """
    )


def drop_exclusion_constraint(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute(f"ALTER TABLE bookings_booking DROP CONSTRAINT IF EXISTS {CONSTRAINT_NAME}")


class Migration(migrations.Migration):

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(add_exclusion_constraint, drop_exclusion_constraint),
    ]
