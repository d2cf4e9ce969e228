"""Operator finance core — performance scoring, commission tiers and payouts
for TNVS fleet operators."""

__version__ = "0.1.0"
