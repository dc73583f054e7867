"""
Core Bank Transfer Service

A small banking service: account creation, login with signed session tokens,
balance lookup and atomic money transfers between accounts. All monetary
values use Decimal precision.
"""

__version__ = "1.0.0"
