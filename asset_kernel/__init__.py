"""
Asset Kernel - transactional core for serialized asset logistics.

Covers:
- Transfer orders between branches (dispatch, receipt, rejection, cancellation)
- The repair state machine at maintenance centers
- Quote/approval gating of inventory consumption
- The inter-branch debt ledger that settles consumed parts
- Append-only movement and audit trails
"""

__version__ = "0.1.0"
