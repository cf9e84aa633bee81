"""Settings package for Innkeep.

`base.py` holds the configuration shared by every environment, including
the booking, loyalty and payment settings. `dev.py`, `prod.py` and `test.py`
override it per environment; pick one with DJANGO_SETTINGS_MODULE.
"""
