"""Waypoint Functions backend."""
