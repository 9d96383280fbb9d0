"""
Prompt builders for the two-stage GEO pipeline and manual refinements.
"""

from typing import Optional

# Direct-answer summary must fit in this many characters
BLUF_MAX_CHARS = 80
MIN_TABLE_COLUMNS = 3
TARGET_LANGUAGE = "繁體中文（台灣）"

NO_PAA_NOTE = "Note: No PAA data found. Infer user intent from keyword directly."


def build_paa_context(questions: list[str]) -> str:
    """Context line describing real user questions, or the no-data note."""
    if questions:
        return f"Real User Questions (PAA): {', '.join(questions)}"
    return NO_PAA_NOTE


def build_draft_prompt(keyword: str, questions: list[str]) -> str:
    """Stage 1: detailed, factual answer for the keyword."""
    return f"""Task: Generate a comprehensive answer for: "{keyword}".
Context: {build_paa_context(questions)}
Goal: Detailed, factual response that answers every user question above.
Tone: Helpful and authoritative.
Language: {TARGET_LANGUAGE}

Do NOT invent product specifications, prices or statistics."""


def build_geo_prompt(keyword: str, questions: list[str], draft: str) -> str:
    """Stage 2: reformat the draft for AI search engines."""
    return f"""Rewrite the source content for the keyword "{keyword}" so that AI search
engines (ChatGPT Search, Google AI Overviews, Perplexity) prefer to quote it.

User search intent:
{build_paa_context(questions)}

Source Content:
{draft}

STRICT OPTIMIZATION RULES:
1. BLUF: Start with a direct-answer summary of at most {BLUF_MAX_CHARS} characters.
2. Structure: Use a clear H2 / H3 heading hierarchy.
3. Table: Include at least one Markdown comparison table with at least {MIN_TABLE_COLUMNS} columns.
4. Lists: Prefer bullet points (* or -) with **bold key terms**.
5. Accuracy: If specific product data is missing, make a conceptual comparison. NEVER fabricate details.

OUTPUT REQUIREMENTS:
- Language: {TARGET_LANGUAGE}
- Format: Markdown only
- Return ONLY the rewritten content, no explanations."""


def build_custom_prompt(
    keyword: str,
    questions: list[str],
    instruction: str,
    draft: Optional[str] = None,
) -> str:
    """
    Stage 2 with a user-supplied instruction.

    Keyword and PAA context are always injected so the custom prompt
    cannot drop the grounding.
    """
    source = f"\nSource Content:\n{draft}\n" if draft else ""
    return f"""Write content for the keyword "{keyword}".

User search intent (you MUST address these real user questions):
{build_paa_context(questions)}
{source}
User instructions:
{instruction}

BASIC REQUIREMENTS:
- Language: {TARGET_LANGUAGE}
- Format: Markdown
- Content must answer questions related to "{keyword}"
- Content must take the user search intent above into account
- Never fabricate facts"""


def build_refinement_prompt(original_content: str, refinement_prompt: str) -> str:
    """Manual post-hoc edit of already generated content."""
    return f"""Adjust the original content according to the user's revision request.

Original Content:
{original_content}

User Revision Request:
{refinement_prompt}

OUTPUT REQUIREMENTS:
1. Keep the language {TARGET_LANGUAGE}
2. Keep Markdown formatting
3. Keep the content accurate - do not add unsupported facts
4. Keep AI-search friendly formatting (bold key terms, bullet points, tables)

Return the complete revised content only."""
