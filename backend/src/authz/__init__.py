"""Authorization: requirements, named policies and their evaluation.

- requirements: membership, cross-tenant and user-management requirements
- policies: named policies (AND of requirements)
- engine: evaluate_policy, the single evaluation function
- dependencies: require_policy FastAPI dependency factory
"""

from .engine import AuthorizationDecision, evaluate_policy
from .policies import POLICIES, Policy, get_policy

__all__ = [
    "AuthorizationDecision",
    "evaluate_policy",
    "POLICIES",
    "Policy",
    "get_policy",
]
