"""Policy configuration."""

from operator_finance.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
