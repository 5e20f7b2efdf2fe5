"""
Treasury Kernel - ledger consistency engine for small-business treasury.

Keeps running totals (account balances, paid-to-date on payables and
receivables, depreciated book values) consistent with an append-only log of
dated postings, and answers point-in-time questions against that log:

- Per-entity serialized, atomic balance adjustments
- Amendment and reversal of postings with exactly-once effects
- Historical balance reconstruction as of any date
- Pure classification rules for obligation status and reporting regime
"""

__version__ = "0.1.0"
