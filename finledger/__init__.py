"""
finledger - Local-first Finance Ledger Core

The persistence and domain-service layer behind a personal/executive
finance tracker: an object store with secondary indexes, user identity
and sessions, and a transaction ledger with derived aggregates.

DESIGN PRINCIPLES:
1. Every record has an owner; every service call checks it
2. Fail early, fail visibly (typed errors, never silent no-ops)
3. Derived aggregates commit together with the ledger write
4. Storage layer is swappable
5. Every significant action is auditable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
