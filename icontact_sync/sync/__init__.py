"""
icontact_sync.sync - Reconciliation engine

Record parsing, deduplication, write planning, plan execution and the
per-run orchestrator.
"""
