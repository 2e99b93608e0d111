import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import markdown2
import premailer
import pytz
from jinja2 import Environment, FileSystemLoader, TemplateError

from feed_digest.models.content import Category, EnrichedRecord
from feed_digest.services.feed_registry import CATEGORY_LABELS


DEFAULT_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")

CATEGORY_EMOJIS: Dict[str, str] = {
    Category.AGENTS.value: "🤖",
    Category.AI.value: "🧠",
    Category.SEO.value: "🔍",
    Category.TECH.value: "💻",
    Category.MARKETING.value: "📈",
}

CATEGORY_COLORS: Dict[str, Dict[str, str]] = {
    Category.AGENTS.value: {"bg": "#f3e8ff", "text": "#7c3aed", "border": "#c4b5fd"},
    Category.AI.value: {"bg": "#fae8ff", "text": "#a21caf", "border": "#f0abfc"},
    Category.SEO.value: {"bg": "#dcfce7", "text": "#15803d", "border": "#86efac"},
    Category.TECH.value: {"bg": "#dbeafe", "text": "#1d4ed8", "border": "#93c5fd"},
    Category.MARKETING.value: {"bg": "#ffedd5", "text": "#c2410c", "border": "#fdba74"},
}


@dataclass
class CompiledEmail:
    """Complete compiled email ready for sending"""
    subject: str
    html_content: str
    plain_text: str
    compile_time: datetime
    article_count: int
    category_count: int
    validation_errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors


class CompilationError(Exception):
    """Custom exception for compilation failures"""
    pass


class EmailCompiler:
    """Renders the digest into HTML and plain text."""

    def __init__(
        self,
        template_dir: str = DEFAULT_TEMPLATE_DIR,
        timezone: str = "UTC",
        max_per_category: int = 10,
        title: str = "Feed Digest",
        archive_url: Optional[str] = None,
    ) -> None:
        self.template_dir = template_dir
        try:
            self.env = Environment(
                loader=FileSystemLoader(template_dir),
                autoescape=True,
                trim_blocks=True,
                lstrip_blocks=True,
            )
        except Exception as e:  # noqa: BLE001
            raise CompilationError(f"Failed to initialize Jinja2 environment: {e}") from e

        self.env.filters["markdown"] = self._markdown_filter
        self.env.filters["timeformat"] = self._timeformat_filter

        self.tz = pytz.timezone(timezone)
        self.max_per_category = max_per_category
        self.title = title
        self.archive_url = archive_url
        self.max_email_size_kb = 102  # Gmail clipping limit

        self.logger = logging.getLogger(__name__)

    def compile_digest(
        self,
        articles: List[EnrichedRecord],
        intro: str,
        date: Optional[datetime] = None,
    ) -> CompiledEmail:
        local_date = (date or datetime.now(pytz.utc)).astimezone(self.tz)
        groups = self.group_by_category(articles)

        template_data: Dict[str, Any] = {
            "title": self.title,
            "date": local_date,
            "intro": intro,
            "groups": groups,
            "article_count": len(articles),
            "idea_count": sum(1 for a in articles if a.content_angles),
            "archive_url": self.archive_url,
        }

        html = self._inline_css(self._render("digest.html.j2", template_data))
        plain_text = self._render("digest.txt.j2", template_data)

        compiled = CompiledEmail(
            subject=self.subject_for(local_date),
            html_content=html,
            plain_text=plain_text,
            compile_time=datetime.now(pytz.utc),
            article_count=len(articles),
            category_count=len(groups),
        )
        compiled.validation_errors = self._validate_email(compiled)
        for err in compiled.validation_errors:
            self.logger.warning(f"Digest validation: {err}")
        return compiled

    def subject_for(self, local_date: datetime) -> str:
        return f"📓 {self.title} - {local_date.strftime('%A, %B')} {local_date.day}, {local_date.year}"

    def group_by_category(self, articles: List[EnrichedRecord]) -> List[Dict[str, Any]]:
        """Group in first-seen category order, keeping at most ``max_per_category`` each."""
        grouped: Dict[str, List[EnrichedRecord]] = {}
        for article in articles:
            grouped.setdefault(article.category.value, []).append(article)

        groups = []
        for category, items in grouped.items():
            groups.append({
                "category": category,
                "label": CATEGORY_LABELS.get(Category(category), category),
                "emoji": CATEGORY_EMOJIS.get(category, "📰"),
                "colors": CATEGORY_COLORS.get(category, CATEGORY_COLORS[Category.TECH.value]),
                "total": len(items),
                "articles": items[: self.max_per_category],
            })
        return groups

    def _render(self, template_name: str, template_data: Dict[str, Any]) -> str:
        try:
            return self.env.get_template(template_name).render(template_data)
        except TemplateError as e:
            self.logger.error("Template rendering failed for %s: %s", template_name, e, exc_info=True)
            raise CompilationError(f"Template error in {template_name}: {e}") from e

    def _inline_css(self, html: str) -> str:
        """Inline CSS for email client compatibility."""
        try:
            return premailer.transform(
                html,
                keep_style_tags=True,
                strip_important=False,
                cssutils_logging_level=logging.ERROR,
            )
        except Exception as e:  # noqa: BLE001
            self.logger.error("CSS inlining failed: %s", e, exc_info=True)
            raise CompilationError(f"CSS inlining error: {e}") from e

    def _validate_email(self, compiled: CompiledEmail) -> List[str]:
        errors: List[str] = []
        if not compiled.html_content:
            errors.append("Empty HTML content.")
        if not compiled.plain_text:
            errors.append("Empty plain text content.")
        if compiled.article_count <= 0:
            errors.append("No articles.")
        size_kb = len(compiled.html_content.encode("utf-8")) / 1024
        if size_kb > self.max_email_size_kb:
            errors.append(f"Email size ({size_kb:.1f}KB) exceeds limit of {self.max_email_size_kb}KB.")
        return errors

    def _markdown_filter(self, text: str) -> str:
        if not text:
            return ""
        return markdown2.markdown(text, safe_mode="escape", extras=["smarty-pants"])

    def _timeformat_filter(self, dt: datetime, format: str = "%b %d") -> str:  # noqa: A002
        if not isinstance(dt, datetime):
            return str(dt)
        return dt.astimezone(self.tz).strftime(format)
