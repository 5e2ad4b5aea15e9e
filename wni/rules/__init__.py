"""
Inbound rule models and reconciliation.
"""

from .models import Protocol, Scope, SecurityRule, RequiredRule, normalize_address
from .reconcile import reconcile, plan_summary
from .required import AWS_RULES, AZURE_RULES, rules_for

__all__ = [
    "Protocol",
    "Scope",
    "SecurityRule",
    "RequiredRule",
    "normalize_address",
    "reconcile",
    "plan_summary",
    "AWS_RULES",
    "AZURE_RULES",
    "rules_for",
]
