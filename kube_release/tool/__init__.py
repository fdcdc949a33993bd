"""Command line tool for kube-release."""
