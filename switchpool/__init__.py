"""Concurrent interactive CLI sessions to network switches over SSH."""
