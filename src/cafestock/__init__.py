"""FIFO batch inventory ledger for café stock."""

__version__ = "0.3.0"
