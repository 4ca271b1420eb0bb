"""Strongbox - encrypted backups, concurrency-capped restores and a security audit trail."""

__version__ = "0.1.0"
__author__ = "Strongbox Team"
