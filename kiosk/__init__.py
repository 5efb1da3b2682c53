"""Masjid donation kiosk: contribution allocation and cross-instance state sync."""

__version__ = "0.1.0"
