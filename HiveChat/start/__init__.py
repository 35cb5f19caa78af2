"""Startup helpers for HiveChat."""
