"""
Billbank

Banking backend where users hold bills in different currencies and move
money between them through authorization-coded transfers. Balances are
computed from confirmed transactions with Decimal precision.
"""

__version__ = "1.0.0"
