"""
Auto-replay rules: condition evaluation, built-in templates and rule management
"""

from dlq_intel.rules.engine import RuleEngine, RuleMatchResult, extract_field
from dlq_intel.rules.service import (
    RuleDraft,
    RuleService,
    RuleTestResult,
    RuleView,
    estimate_success_rate,
)
from dlq_intel.rules.templates import BUILT_IN_TEMPLATES, RuleTemplate, get_template, list_templates

__all__ = [
    "RuleEngine",
    "RuleMatchResult",
    "extract_field",
    "RuleDraft",
    "RuleService",
    "RuleTestResult",
    "RuleView",
    "estimate_success_rate",
    "BUILT_IN_TEMPLATES",
    "RuleTemplate",
    "get_template",
    "list_templates",
]
