"""Volunteer hours ledger.

This package is organized by feature modules (identity, sessions, manual,
overrides, hours, history) around a single ledger store, with a thin Flask
controller layer on top of the service layer.
"""
