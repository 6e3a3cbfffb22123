"""
GL Kernel - general ledger posting engine.

Accepts proposed journal entries and decides, inside one transaction,
whether they post immediately, wait for approval, or are rejected:
- Exact decimal money arithmetic
- Chart-of-accounts and segregation-of-duties policy
- Idempotent, retriable posting
"""

__version__ = "0.1.0"
