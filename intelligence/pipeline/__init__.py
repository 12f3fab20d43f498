"""Specification compression."""

from .minifier import estimate_tokens, minify, minify_for_operation, optimize_for_token_limit

__all__ = ["estimate_tokens", "minify", "minify_for_operation", "optimize_for_token_limit"]
