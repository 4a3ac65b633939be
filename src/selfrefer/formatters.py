"""Context-block renderers for search and view output.

Output is markdown meant to be pasted into an agent's context window, so the
renderers return plain strings; the CLI decides how to print them.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from selfrefer.core.models import ContentType, Record

CLI_NAME = "self-refer"
DEFAULT_ROOT = ".claude"

_INSIGHT_MARKERS = {
    ContentType.PLAN: ("✅", "- [x]", "**Key"),
    ContentType.PATTERN: ("Usage:", "Example:", "**Best Practice"),
}

_CONTEXT_TEMPLATES = {
    ContentType.PLAN: (
        "This plan provides strategic guidance for implementing {title}. Use it to understand "
        "implementation phases, success criteria, and key considerations."
    ),
    ContentType.KNOWLEDGE: (
        "This domain knowledge about {title} should inform technical decisions and ensure "
        "alignment with business requirements."
    ),
    ContentType.SPEC: (
        "This specification for {title} defines expected behaviour. Check new work against it "
        "before and after implementation."
    ),
    ContentType.PATTERN: (
        "This code pattern for {title} can be directly applied or adapted for similar "
        "functionality in the current implementation."
    ),
    ContentType.PAGE: (
        "This session context about {title} provides historical development decisions and "
        "approaches that may be relevant to current work."
    ),
}


@dataclass
class FormattedItem:
    """Presentation view of a record."""
    id: int
    title: str
    file: str
    metadata: str
    content: Optional[str] = None
    brief: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "FormattedItem":
        return cls(
            id=record.id,
            title=record.title,
            file=record.file,
            metadata=record.metadata_line,
            content=record.content,
            brief=brief_summary(record.content, record.content_type),
        )


def key_insights(content: str, content_type: ContentType) -> str:
    """Up to three lines that look like conclusions for this content type."""
    insights: List[str] = []
    for line in content.split("\n"):
        if content_type in (ContentType.KNOWLEDGE, ContentType.SPEC):
            hit = (
                line.startswith("## ")
                or "**Important" in line
                or "**Note" in line
            )
        else:
            hit = any(marker in line for marker in _INSIGHT_MARKERS.get(content_type, ()))
        if hit:
            insights.append(line.strip())

    if not insights:
        return "No specific insights extracted"
    return "\n".join(insights[:3])


def applicable_context(content_type: ContentType, title: str) -> str:
    template = _CONTEXT_TEMPLATES.get(content_type)
    if template is None:
        return "Apply this information to inform current development decisions."
    return template.format(title=title)


def brief_summary(content: str, content_type: ContentType) -> str:
    """First prose line longer than 30 characters, cut at 120."""
    for line in content.split("\n"):
        stripped = line.strip()
        if len(stripped) > 30 and not stripped.startswith("#") and not stripped.startswith("---"):
            return stripped[:120] + ("..." if len(stripped) > 120 else "")
    return f"{content_type.value.capitalize()} content available for reference"


def source_path(content_type: ContentType, filename: str, root: str = DEFAULT_ROOT) -> str:
    return f"{root}/{content_type.directory}/{filename}"


def format_single_match(
    item: FormattedItem, content_type: ContentType, root: str = DEFAULT_ROOT
) -> str:
    sections = [
        f"# {content_type.emoji} {content_type.label}: {item.title}",
        "",
        f"## Source: `{source_path(content_type, item.file, root)}`",
        "",
    ]

    if item.content:
        sections.extend([
            item.content,
            "",
            "## Key Insights",
            key_insights(item.content, content_type),
            "",
            "## Applicable Context",
            applicable_context(content_type, item.title),
            "",
        ])

    sections.extend(["---", "", f"**{content_type.label} loaded and available for reference**"])
    return "\n".join(sections)


def format_multiple_matches(
    items: Sequence[FormattedItem],
    content_type: ContentType,
    search_term: str,
    root: str = DEFAULT_ROOT,
) -> str:
    label = content_type.label
    sections = [f'# {label} Items Found for "{search_term}"', "", f"## Matching {label}:", ""]

    for index, item in enumerate(items, start=1):
        brief = brief_summary(item.content, content_type) if item.content else "Content available for use"
        sections.append(f"### {index}. **{item.title}** (`{source_path(content_type, item.file, root)}`)")
        sections.append(f"💡 *{brief}*")
        sections.append(f"🎯 *{item.metadata}*")
        sections.append("")

    sections.append(
        f"**Access Specific**: `{CLI_NAME} {content_type.value} view <number>` "
        f"to view detailed {content_type.value}"
    )
    return "\n".join(sections)


def format_no_matches(
    available: Sequence[FormattedItem], content_type: ContentType, search_term: str
) -> str:
    label = content_type.label
    sections = [
        f"# No {label} Found",
        "",
        f'No {content_type.value} found for "{search_term}".',
        "",
        f"## Available {label} Base:",
    ]
    for index, item in enumerate(available[:5], start=1):
        sections.append(f"{index}. **{item.title}** - {item.brief or 'Available for use'}")

    sections.extend([
        "",
        f"**Usage**: `{CLI_NAME} {content_type.value} view <number>` or try different keywords",
        f"**Add {label}**: Document new insights as they arise during development",
    ])
    return "\n".join(sections)


def format_search_results(
    matches: Sequence[FormattedItem],
    available: Sequence[FormattedItem],
    content_type: ContentType,
    search_term: str,
    root: str = DEFAULT_ROOT,
) -> str:
    """Pick the single, multiple or no-match rendering."""
    if not matches:
        return format_no_matches(available, content_type, search_term)
    if len(matches) == 1:
        return format_single_match(matches[0], content_type, root)
    return format_multiple_matches(matches, content_type, search_term, root)


__all__ = [
    "FormattedItem",
    "key_insights",
    "applicable_context",
    "brief_summary",
    "source_path",
    "format_single_match",
    "format_multiple_matches",
    "format_no_matches",
    "format_search_results",
]
