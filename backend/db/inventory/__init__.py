"""
Inventory ledger.

Models:
- InventoryOperation (append-only add/remove requests with a pending/approved/rejected lifecycle)

Stock is never stored per operation: the effective quantity of a device is its
baseline plus the signed sum of its approved operations (see services.reconciliation).
"""
