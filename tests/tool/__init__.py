"""Tests for the kube-release command line tool."""
