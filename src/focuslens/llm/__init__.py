"""Completion API client and prompts."""

from focuslens.llm.client import CompletionClient, CompletionResponse
from focuslens.llm.prompts import EMPTY_INSIGHT, build_insight_prompt

__all__ = ["EMPTY_INSIGHT", "CompletionClient", "CompletionResponse", "build_insight_prompt"]
