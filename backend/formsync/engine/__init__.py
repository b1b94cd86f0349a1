"""Rule engine - visibility rules and submission mapping"""
from .condition_evaluator import ConditionEvaluator
from .submission_mapper import SubmissionMapper

__all__ = [
    "ConditionEvaluator",
    "SubmissionMapper",
]
