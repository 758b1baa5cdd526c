"""Out-of-service vehicle tracker: sheet import, location join, garage mapping and audit history."""

__version__ = "0.1.0"
