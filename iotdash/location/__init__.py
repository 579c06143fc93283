"""Geofence tracking for location-triggered automations."""
