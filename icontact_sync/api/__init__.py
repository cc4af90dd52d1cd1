"""
icontact_sync.api - Remote directory access

CardDAV client used to fetch raw vCard records.
"""
