"""Kozeki command-line interface."""
