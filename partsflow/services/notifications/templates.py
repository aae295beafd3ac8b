"""
Jinja2 template engine for notification emails.

Each email template is a pair of files under ``partsflow/templates/email``:
``{name}_subject.txt`` and ``{name}.html``. HTML templates extend
``base.html`` and are autoescaped.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from partsflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates" / "email"


class TemplateEngineError(Exception):
    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateEngine:
    """Loads and renders email templates."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.template_dir = Path(template_dir or DEFAULT_TEMPLATE_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = format_currency
        self.env.filters["date"] = format_date

    def render_email(self, template_name: str, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Render subject and HTML body for ``template_name``.

        Returns:
            Dictionary with 'subject' and 'html_body'

        Raises:
            TemplateEngineError: If a template is missing or fails to render
        """
        try:
            subject = self.env.get_template(f"{template_name}_subject.txt").render(**context)
            html_body = self.env.get_template(f"{template_name}.html").render(**context)
        except TemplateNotFound as e:
            raise TemplateEngineError(
                f"Template not found: {e.name}", template_name=template_name
            ) from e
        except TemplateError as e:
            logger.error(
                "Template rendering failed",
                template_name=template_name,
                error=str(e),
            )
            raise TemplateEngineError(
                f"Failed to render template: {e}", template_name=template_name
            ) from e

        return {"subject": " ".join(subject.split()), "html_body": html_body}


def format_currency(value: Any, currency: str = "PLN") -> str:
    if value is None:
        return ""
    return f"{Decimal(value):,.2f} {currency}".replace(",", " ")


def format_date(value: Any, fmt: str = "%Y-%m-%d %H:%M") -> str:
    if isinstance(value, datetime):
        return value.strftime(fmt)
    return str(value or "")
