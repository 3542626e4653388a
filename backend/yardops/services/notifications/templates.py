"""
E-mail template engine with Jinja2.

Each e-mail is three files in the template directory: ``{name}_subject.txt``,
``{name}.html`` and an optional ``{name}.txt`` plain-text body.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from yardops.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).parent.parent.parent.parent / "templates" / "emails"


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


class TemplateEngine:
    """
    Template engine for rendering transactional e-mail.

    Missing context variables raise instead of rendering as blanks so a
    half-filled e-mail never reaches a customer.
    """

    def __init__(self, template_dir: Optional[Union[str, Path]] = None, cache_size: int = 100):
        """
        Initialize the template engine.

        Args:
            template_dir: Directory containing template files. Defaults to
                ``backend/templates/emails``.
            cache_size: Size of the template cache.
        """
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            cache_size=cache_size,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        self.env.filters["currency"] = self._format_currency
        self.env.filters["date"] = self._format_date

        logger.debug("Template engine initialized", template_dir=str(self.template_dir))

    def render_email(self, template_name: str, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Render an e-mail template.

        Args:
            template_name: Template base name (without extension).
            context: Variables substituted into the template.

        Returns:
            Dictionary with ``subject``, ``html_body`` and ``text_body``.
            ``text_body`` falls back to the subject line when the template
            has no plain-text part.

        Raises:
            TemplateNotFoundError: If the subject or HTML template is missing.
            TemplateRenderError: If rendering fails.
        """
        try:
            subject = self._load_template(f"{template_name}_subject.txt").render(**context)
            html_body = self._load_template(f"{template_name}.html").render(**context)
        except TemplateNotFound as e:
            logger.error("Email template not found", template_name=template_name, error=str(e))
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {e}",
                template_name=template_name,
            ) from e

        subject = " ".join(subject.split())
        try:
            text_body = self._load_template(f"{template_name}.txt").render(**context)
        except TemplateNotFound:
            text_body = subject
        except TemplateError as e:
            raise TemplateRenderError(
                f"Failed to render email template: {e}",
                template_name=template_name,
            ) from e

        return {"subject": subject, "html_body": html_body, "text_body": text_body}

    def _load_template(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    @staticmethod
    def _format_currency(value: Any) -> str:
        """Format a number as currency."""
        if value is None or value == "":
            return "$0.00"
        return f"${Decimal(str(value)):,.2f}"

    @staticmethod
    def _format_date(value: Any) -> str:
        if isinstance(value, datetime):
            return value.strftime("%B %d, %Y")
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            return dt.strftime("%B %d, %Y")
        except (ValueError, AttributeError):
            return str(value or "")


def get_template_engine(template_dir: Optional[Union[str, Path]] = None) -> TemplateEngine:
    """Factory function to create a template engine instance."""
    return TemplateEngine(template_dir=template_dir)
