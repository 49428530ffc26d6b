"""Prompts for community summaries, local answers and map-reduce global answers."""

from typing import Sequence

from personal_graphrag.models import GraphEntity

from .base import PromptTemplate, clean_text, truncate


class CommunitySummaryPrompt(PromptTemplate):
    """Summarize a leaf community from its entities and relationships."""

    TEMPLATE = """Generate a comprehensive summary for a community of related entities.

Entities in this community:
{entities}

Relationships:
{relationships}

Write a coherent summary (2-3 paragraphs) that:
1. Identifies the main theme or connection between these entities
2. Describes the key relationships and interactions
3. Highlights any notable patterns or important details

Summary:"""

    MAX_DESCRIPTION_CHARS = 100

    def format(
        self,
        entities: Sequence[GraphEntity] = (),
        relationships: Sequence[str] = (),
        **kwargs,
    ) -> str:
        entity_lines = []
        for entity in entities:
            description = truncate(clean_text(entity.description), self.MAX_DESCRIPTION_CHARS)
            entity_lines.append(f"- {entity.name}: {description}")
        return self.TEMPLATE.format(
            entities="\n".join(entity_lines),
            relationships="\n".join(f"- {r}" for r in relationships),
        )


class HierarchicalSummaryPrompt(PromptTemplate):
    """Summarize a coarser community from the summaries of its children."""

    TEMPLATE = """Generate a summary for a level {level} community built from the sub-communities below.

Sub-community summaries:
{summaries}

Write a coherent summary (2-3 paragraphs) that:
1. Identifies the overarching theme shared by the sub-communities
2. Describes how the sub-communities relate to each other
3. Keeps the most important people, places and events

Summary:"""

    def format(self, child_summaries: Sequence[str] = (), level: int = 1, **kwargs) -> str:
        summaries = "\n\n".join(
            f"[{i + 1}] {summary.strip()}" for i, summary in enumerate(child_summaries)
        )
        return self.TEMPLATE.format(level=level, summaries=summaries)


class LocalAnswerPrompt(PromptTemplate):
    """Short grounded answer over the top ranked entities."""

    TEMPLATE = """Answer ONLY using this data. Do NOT add external information.

Data:
{entities}

Q: {query}

Answer in 1 sentence using ONLY the data above. If insufficient, say "No relevant data found.":"""

    MAX_ENTITIES = 3
    MAX_DESCRIPTION_CHARS = 50
    MAX_QUERY_CHARS = 100

    def format(self, query: str = "", entities: Sequence[GraphEntity] = (), **kwargs) -> str:
        lines = []
        for entity in list(entities)[: self.MAX_ENTITIES]:
            description = ""
            if entity.description:
                description = f": {truncate(entity.description, self.MAX_DESCRIPTION_CHARS)}"
            lines.append(f"- {entity.name} ({entity.type}){description}")
        return self.TEMPLATE.format(
            entities="\n".join(lines),
            query=truncate(query, self.MAX_QUERY_CHARS),
        )


class StreamingAnswerPrompt(PromptTemplate):
    """Grounded answer over more entities plus the best community summary."""

    TEMPLATE = """Answer ONLY using the information below. Do NOT add external knowledge.

Entities:
{entities}{community}

Question: {query}

Rules:
- Use ONLY entities/context above
- 1-2 sentences maximum
- If insufficient data, say so

Answer:"""

    MAX_ENTITIES = 5

    def format(
        self,
        query: str = "",
        entities: Sequence[GraphEntity] = (),
        community_summary: str | None = None,
        **kwargs,
    ) -> str:
        lines = []
        for entity in list(entities)[: self.MAX_ENTITIES]:
            description = f": {entity.description}" if entity.description else ""
            lines.append(f"- {entity.name} ({entity.type}){description}")
        community = f"\n\nContext:\n{community_summary}" if community_summary else ""
        return self.TEMPLATE.format(entities="\n".join(lines), community=community, query=query)


class CommunityMapPrompt(PromptTemplate):
    """Partial answer plus helpfulness score from one community summary."""

    TEMPLATE = """---Role---
You are a helpful assistant responding to questions about data in the provided community summary.

---Goal---
Generate a response to the question based ONLY on the community summary provided below.
Also provide a helpfulness score from 0-100 indicating how relevant and useful your answer is for the question.

If the community summary does not contain information relevant to the question, respond with score 0.

---Community Summary---
{summary}

---Question---
{query}

---Response Format---
First, output a helpfulness score on its own line: SCORE: <number from 0-100>
Then provide your answer based on the community summary.

Response:"""

    def format(self, query: str = "", summary: str = "", **kwargs) -> str:
        return self.TEMPLATE.format(summary=summary, query=query)


class GlobalReducePrompt(PromptTemplate):
    """Synthesize the final answer from scored community answers."""

    TEMPLATE = """---Role---
You are a helpful assistant responding to questions about a dataset by synthesizing perspectives from multiple analyst reports.

---Goal---
Generate a response of {response_type} that responds to the user's question, summarizing all the reports from multiple analysts who focused on different parts of the dataset.

If you don't know the answer or the reports don't contain relevant information, say so. Do not make anything up.

The final response should:
1. Remove irrelevant information from the reports
2. Merge the cleaned information into a comprehensive answer
3. Provide explanations of key points and implications
4. Reference the report numbers when citing specific information, e.g., [Report 1, 3]

Do not mention "analysts" or "reports" in a way that's visible to the end user; synthesize the information naturally.

---Analyst Reports---
{reports}

---Question---
{query}

---Target Response Format---
{response_type}

Response:"""

    def format(
        self,
        query: str = "",
        answers: Sequence[tuple[int, str]] = (),
        response_type: str = "multiple paragraphs",
        **kwargs,
    ) -> str:
        """Format the reduce prompt.

        Args:
            query: User question
            answers: ``(helpfulness_score, answer)`` pairs in report order
            response_type: Requested answer shape
        """
        reports = "\n".join(
            f"--- Report {i + 1} (Helpfulness: {score}/100) ---\n{answer}\n"
            for i, (score, answer) in enumerate(answers)
        )
        return self.TEMPLATE.format(response_type=response_type, reports=reports, query=query)


class AugmentedPrompt(PromptTemplate):
    """Wrap graph context around a user question for an external model."""

    TEMPLATE = """Based on the following context from your personal knowledge graph, answer the user's question.

Context:
{context}

User Question: {query}

Answer:"""

    def __init__(self, template: str | None = None):
        if template is not None:
            self.TEMPLATE = template

    def format(self, query: str = "", context: str = "", **kwargs) -> str:
        # Plain replacement so user templates may contain other braces
        return self.TEMPLATE.replace("{context}", context).replace("{query}", query)
