"""Prompt construction for tag suggestion requests."""

from .models import SUGGESTION_CATEGORIES

CATEGORY_GUIDE = {
    "task_type": "bug-fix, feature, refactor, documentation, testing, optimization",
    "technology": "framework, library, language, tool names",
    "domain": "business domain, feature area",
    "complexity": "simple, moderate, complex, expert",
    "outcome": "success, partial, failed, blocked",
    "pattern": "design pattern, architectural pattern, code pattern",
}


def build_tag_prompt(context: str, existing_tags: list[str]) -> str:
    """Build the single-turn instruction sent to the model."""
    vocabulary = ", ".join(existing_tags) if existing_tags else "No existing tags"
    categories = "\n".join(
        f"  * {name}: {CATEGORY_GUIDE[name]}" for name in SUGGESTION_CATEGORIES
    )

    return f"""You are a tag suggestion system for AI coding sessions. Analyze the session context and suggest relevant tags.

EXISTING TAGS IN SYSTEM:
{vocabulary}

SESSION CONTEXT:
{context}

Suggest 3-7 tags for this session. For each tag:
- Prefer existing tags when appropriate (higher confidence: 0.7-1.0)
- Suggest new tags when needed (lower confidence: 0.4-0.7)
- Provide confidence score (0-1) where:
  * 0.9-1.0: Very confident (clear match with existing tag)
  * 0.7-0.9: Confident (good fit with existing tag or obvious new tag)
  * 0.5-0.7: Moderate (reasonable new tag suggestion)
  * 0.4-0.5: Low confidence (speculative new tag)
- Categorize as one of:
{categories}
- Explain your reasoning briefly (1-2 sentences)

Respond ONLY with valid JSON in this exact format (no additional text):
{{
  "suggestions": [
    {{
      "tagName": "tag-name",
      "confidence": 0.85,
      "category": "technology",
      "reasoning": "Brief explanation"
    }}
  ]
}}"""
