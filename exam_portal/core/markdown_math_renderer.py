"""Markdown + LaTeX rendering for assessment descriptions and question text.

Teachers write descriptions and questions as markdown with ``$...$`` math.
The server renders them to HTML fragments; the browser typesets the math
with MathJax when it shows the page.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from exam_portal.core.models import Assessment, Question

MATHJAX_SCRIPT = "https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str, placeholder: str = "<p><em>No content provided.</em></p>") -> str:
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return placeholder
        return self._markdown.render(sanitized)

    def render_question(self, question: Question) -> str:
        return self.render_fragment(question.text)

    def render_description(self, assessment: Assessment) -> str:
        # An empty description renders as nothing rather than a placeholder.
        return self.render_fragment(assessment.description, placeholder="")


# MarkdownIt is safe for concurrent read-only renders.
renderer = MarkdownMathRenderer()
