"""
icontact_sync.storage - Contact store

SQLite persistence for reconciled contacts and the sync run history.
"""
