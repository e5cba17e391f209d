"""
Settlement Kernel

The ledger engine behind negotiated debt settlements ("acordos") attached to
legal cases:
- Installment schedules with exact cent allocation
- Late-fee and daily-interest accrual
- Append-only payment records
- Derived agreement status and completion
- Hash-chained audit trail
"""

__version__ = "0.1.0"
