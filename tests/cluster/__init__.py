"""Tests for cluster implementations."""
