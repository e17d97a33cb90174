"""
Lending Core

Installment scheduling and payment-reconciliation engine for micro-lending:
due-date schedules, partial payment chains, advance batches and
ledger-driven loan aggregates using Decimal arithmetic throughout.
"""

__version__ = "1.0.0"
