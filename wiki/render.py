"""
Markdown and template rendering.
"""

import datetime
import logging
from pathlib import Path
from typing import Any

import jinja2
import markdown

logger = logging.getLogger(__name__)

TEMPLATES_PATH = Path(__file__).parent / "templates"


def render_markdown(text: str | None) -> str:
    """Convert markdown text to HTML"""
    if not text:
        return ""
    return markdown.markdown(
        text,
        extensions=[
            "markdown.extensions.fenced_code",
            "markdown.extensions.tables",
        ],
    )


class TemplateRenderer:
    """
    Renders the server side HTML pages from the Jinja2 templates.
    """

    def __init__(self, path: Path = TEMPLATES_PATH):
        self.jinja2_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(path),
            autoescape=jinja2.select_autoescape(["html"]),
            enable_async=True,
        )
        self.jinja2_env.filters["markdown"] = render_markdown

    async def render(self, template: str, context: dict[str, Any]) -> str:
        """
        Render the template. Every template gets the current timestamp.
        """
        logger.debug("Rendering template=%s", template)
        context = {"timestamp": datetime.datetime.now().isoformat(), **context}
        return await self.jinja2_env.get_template(template).render_async(**context)
