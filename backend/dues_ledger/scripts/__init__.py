"""Command line utilities for operating the ledger."""
