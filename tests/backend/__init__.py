"""Tests for state backends."""
