"""Seeded protocol replays that exercise the calibration engine end to end."""
