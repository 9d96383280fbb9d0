# -*- coding: utf-8 -*-
"""
Content-compliance checklist for generated GEO content.

Checks the formatting rules the refine prompt asks for:
1. BLUF - the first paragraph is a short direct answer
2. Headings - at least one H2/H3
3. Comparison table - a Markdown table with enough columns
4. Bullet points and bold key terms
5. Keyword coverage - the keyword appears in the text

The checklist is advisory. It never blocks a result from being returned.
"""

import re
from typing import Optional

from .models import ComplianceCheck, ComplianceReport
from .prompts import BLUF_MAX_CHARS, MIN_TABLE_COLUMNS

HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})\s+\S")
SUBHEADING_RE = re.compile(r"^\s{0,3}#{2,3}\s+\S", re.MULTILINE)
BULLET_RE = re.compile(r"^\s*[-*+]\s+\S", re.MULTILINE)
BOLD_RE = re.compile(r"\*\*[^*\n]+?\*\*|__[^_\n]+?__")
TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)+\|?\s*$")
INLINE_MARKUP_RE = re.compile(r"[*_`>#]")


def _strip_inline_markup(text: str) -> str:
    return INLINE_MARKUP_RE.sub("", text).strip()


def first_paragraph(content: str) -> str:
    """
    First non-heading paragraph of Markdown content.

    Consecutive non-blank lines form one paragraph. Headings, tables and
    horizontal rules before it are skipped.
    """
    lines: list[str] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            if lines:
                break
            continue
        if HEADING_RE.match(line) or line.startswith("|") or set(line) <= {"-", "*", "_"}:
            if lines:
                break
            continue
        lines.append(line)
    return _strip_inline_markup(" ".join(lines))


def max_table_columns(content: str) -> int:
    """Widest Markdown table in the content, by separator-row cell count."""
    widest = 0
    lines = content.splitlines()
    for i in range(1, len(lines)):
        if TABLE_SEPARATOR_RE.match(lines[i]) and "|" in lines[i - 1]:
            cells = [c for c in lines[i].strip().strip("|").split("|") if c.strip()]
            widest = max(widest, len(cells))
    return widest


def check_compliance(content: str, keyword: Optional[str] = None) -> ComplianceReport:
    """
    Run the checklist over generated content.

    Args:
        content: Markdown content to check.
        keyword: Keyword the content should mention. Skipped when None.

    Returns:
        ComplianceReport with one entry per checklist item.
    """
    report = ComplianceReport()
    content = content or ""

    bluf = first_paragraph(content)
    report.checks.append(ComplianceCheck(
        name="bluf",
        passed=0 < len(bluf) <= BLUF_MAX_CHARS,
        detail=f"Opening summary is {len(bluf)} characters (max {BLUF_MAX_CHARS})",
    ))

    headings = len(SUBHEADING_RE.findall(content))
    report.checks.append(ComplianceCheck(
        name="headings",
        passed=headings > 0,
        detail=f"{headings} H2/H3 headings",
    ))

    columns = max_table_columns(content)
    report.checks.append(ComplianceCheck(
        name="comparison_table",
        passed=columns >= MIN_TABLE_COLUMNS,
        detail=f"Widest table has {columns} columns (min {MIN_TABLE_COLUMNS})",
    ))

    bullets = len(BULLET_RE.findall(content))
    report.checks.append(ComplianceCheck(
        name="bullet_points",
        passed=bullets > 0,
        detail=f"{bullets} bullet points",
    ))

    bold = len(BOLD_RE.findall(content))
    report.checks.append(ComplianceCheck(
        name="bold_key_terms",
        passed=bold > 0,
        detail=f"{bold} bold terms",
    ))

    if keyword:
        mentioned = keyword.lower() in content.lower()
        report.checks.append(ComplianceCheck(
            name="keyword_mentioned",
            passed=mentioned,
            detail=f"'{keyword}' {'found' if mentioned else 'missing'}",
        ))

    return report
