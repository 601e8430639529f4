"""Abuse-control services: detection, enforcement, overrides and notifications."""
