"""
PoB Snapshot Indexer
====================

Read-only observer that mirrors Proof-of-Builders contracts into a local store.

Features:
- Per-network polling of jury (voting) and certificate contracts
- Lifecycle and tally derivation from independently fetched raw flags
- IPFS metadata cache with exponential-backoff retry bookkeeping
- Checkpointed role-log scans for eligibility reconciliation
- All-or-nothing team roster reconciliation
"""

__version__ = "1.0.0"
__author__ = "PoB Team"
