"""HTTP surface over the kiosk services."""
