"""Task assignment, billing ledger and session directory for a cybercafe portal."""

__version__ = "0.1.0"
