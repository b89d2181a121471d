"""
QIWI checkout service.

Creates QIWI bills for USD checkouts, tracks their status through
payment notifications and pays confirmed bills out to a QIWI wallet.
"""

__version__ = "1.0.0"
