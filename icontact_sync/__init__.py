"""
icontact_sync - One-way iCloud (CardDAV) contacts reconciliation.

Keeps a local contact store in step with a remote address book by applying
the minimal set of inserts and name updates on every run.
"""

__version__ = "0.1.0"
