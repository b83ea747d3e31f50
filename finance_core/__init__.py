"""
Finance Core

Loan and credit-card computation core for a personal-finance tracker:
rate-history-aware amortization, billing cycle arithmetic, and statement
reconciliation with repayment allocation. All financial math uses Decimal.
"""

__version__ = "1.0.0"
