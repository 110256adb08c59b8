"""
Policy — regulatory rules as versioned data.

Components:
    expression   — applicability predicate parser/evaluator (AST, no eval)
    facts        — PolicyFacts, the flat record predicates run against
    enforcement  — OR-merge of template hints into an enforcement plan
    kernel       — PolicyKernel: evaluation + requirement instantiation
"""

from tokengate.policy.expression import evaluate, matched_terms, referenced_fields
from tokengate.policy.enforcement import EnforcementPlan, build_enforcement_plan
from tokengate.policy.facts import PolicyFacts

__all__ = [
    "evaluate", "matched_terms", "referenced_fields",
    "EnforcementPlan", "build_enforcement_plan",
    "PolicyFacts",
]
