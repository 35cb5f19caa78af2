"""Tests for HiveChat."""
