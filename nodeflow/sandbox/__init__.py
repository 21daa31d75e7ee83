"""Sandbox module for evaluating user-authored custom logic."""

from nodeflow.sandbox.evaluator import SandboxedEvaluator, check_code

__all__ = ["SandboxedEvaluator", "check_code"]
