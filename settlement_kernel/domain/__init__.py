"""Pure domain layer: money, dates, schedules, accrual and derivation. ZERO I/O."""
