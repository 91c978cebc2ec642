"""System prompt rendering for the three answer variants."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .ingest.chunking import CHARS_PER_TOKEN, estimate_tokens
from .models import Course

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .references import ExternalReferences

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SUPPLEMENTAL_CHAR_LIMIT = 1500
MIN_SYSTEM_PROMPT_TOKENS = 2000
PROMPT_HEADROOM_TOKENS = 1000
TRUNCATION_NOTICE = "[Content truncated to save space. Relevant course documents remain available.]"


def _load_template(name: str) -> str:
    """Read and trim the contents of a template file."""
    return (_TEMPLATE_DIR / name).read_text(encoding="utf-8").strip()


_GROUNDED_TEMPLATE = _load_template("grounded_system.txt")
_SUPPLEMENTAL_TEMPLATE = _load_template("supplemental_system.txt")
_NO_MATERIAL_TEMPLATE = _load_template("no_material_system.txt")


def _course_labels(course: Optional[Course]) -> dict[str, str]:
    if course is None:
        return {"course_name": "this course", "course_code": "unknown code"}
    return {"course_name": course.name, "course_code": course.code}


def render_references_section(references: Optional["ExternalReferences"]) -> str:
    if references is None or references.is_empty():
        return ""
    lines = ["", "# Further reading", ""]
    if references.journals:
        lines.append("Journals:")
        for journal in references.journals:
            lines.append(f"- {journal.title} ({journal.authors}, {journal.year}). {journal.description}".rstrip())
    if references.books:
        lines.append("Books:")
        for book in references.books:
            lines.append(f"- {book.title} by {book.authors} ({book.year}). {book.description}".rstrip())
    if references.websites:
        lines.append("Websites:")
        for site in references.websites:
            lines.append(f"- {site.title}: {site.url}. {site.description}".rstrip())
    lines.append("Mention these as optional further reading when they fit the question.")
    return "\n" + "\n".join(lines) + "\n"


def render_grounded_prompt(
    course: Optional[Course],
    context: str,
    *,
    supplemental: Optional[str] = None,
    references: Optional["ExternalReferences"] = None,
) -> str:
    supplemental_section = ""
    if supplemental:
        excerpt = supplemental
        if len(excerpt) > SUPPLEMENTAL_CHAR_LIMIT:
            excerpt = excerpt[:SUPPLEMENTAL_CHAR_LIMIT] + "..."
        supplemental_section = f"\n# Student document analysis\n\n{excerpt}\n"
    return _GROUNDED_TEMPLATE.format(
        context=context,
        supplemental_section=supplemental_section,
        references_section=render_references_section(references),
        **_course_labels(course),
    ).strip()


def render_supplemental_prompt(
    course: Optional[Course],
    supplemental: str,
    *,
    references: Optional["ExternalReferences"] = None,
) -> str:
    return _SUPPLEMENTAL_TEMPLATE.format(
        supplemental=supplemental,
        references_section=render_references_section(references),
        **_course_labels(course),
    ).strip()


def render_no_material_prompt(
    course: Optional[Course],
    *,
    references: Optional["ExternalReferences"] = None,
) -> str:
    return _NO_MATERIAL_TEMPLATE.format(
        references_section=render_references_section(references),
        **_course_labels(course),
    ).strip()


def truncate_system_prompt(system_prompt: str, user_message: str, max_prompt_tokens: int) -> str:
    """Cut the system prompt so it leaves room for the user message."""

    allowed_tokens = max(
        MIN_SYSTEM_PROMPT_TOKENS,
        max_prompt_tokens - estimate_tokens(user_message) - PROMPT_HEADROOM_TOKENS,
    )
    allowed_chars = allowed_tokens * CHARS_PER_TOKEN
    if len(system_prompt) <= allowed_chars:
        return system_prompt
    return system_prompt[:allowed_chars].rstrip() + "\n\n" + TRUNCATION_NOTICE


__all__ = [
    "SUPPLEMENTAL_CHAR_LIMIT",
    "TRUNCATION_NOTICE",
    "render_grounded_prompt",
    "render_no_material_prompt",
    "render_references_section",
    "render_supplemental_prompt",
    "truncate_system_prompt",
]
