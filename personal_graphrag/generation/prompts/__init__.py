"""Prompt templates for summarization and answer generation."""

from .base import PromptTemplate, clean_text, estimate_tokens, truncate
from .graphrag import (
    AugmentedPrompt,
    CommunityMapPrompt,
    CommunitySummaryPrompt,
    GlobalReducePrompt,
    HierarchicalSummaryPrompt,
    LocalAnswerPrompt,
    StreamingAnswerPrompt,
)

__all__ = [
    "PromptTemplate",
    "clean_text",
    "estimate_tokens",
    "truncate",
    "AugmentedPrompt",
    "CommunityMapPrompt",
    "CommunitySummaryPrompt",
    "GlobalReducePrompt",
    "HierarchicalSummaryPrompt",
    "LocalAnswerPrompt",
    "StreamingAnswerPrompt",
]
