"""Prompt building utilities."""

from .prompt_builder import SYSTEM_PROMPT, SchemaPromptBuilder

__all__ = ["SYSTEM_PROMPT", "SchemaPromptBuilder"]
