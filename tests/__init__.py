"""Tests for kube-release."""
