"""
Email template loading and rendering.

Templates live in ``counselbook/templates`` as ``{name}.txt`` (plain text)
and ``{name}.html`` pairs and use ``str.format`` placeholders.
"""
import html
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from counselbook.lib.logging import get_logger
from counselbook.lib.meeting_links import build_meeting_url
from counselbook.lib.timeutils import format_session_time, parse_datetime


logger = get_logger(__name__)


TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

BRAND_NAME = "Groom"

SUBJECTS = {
    "booking_confirmation": f"Your Session is Confirmed - {BRAND_NAME}",
    "booking_reschedule": f"Session Rescheduled - {BRAND_NAME}",
    "booking_cancellation": f"Session Cancelled - {BRAND_NAME}",
}

# Payload keys holding ISO timestamps, rendered as readable session times
_TIME_FIELDS = ("scheduled_time", "new_time", "original_time")


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


@lru_cache(maxsize=32)
def load_template(name: str, extension: str) -> Optional[str]:
    """
    Load a template file.

    Args:
        name: Template name, e.g. ``booking_confirmation``
        extension: ``txt`` or ``html``

    Returns:
        Template content, or None if the file does not exist
    """
    template_path = TEMPLATES_DIR / f"{name}.{extension}"
    if not template_path.exists():
        logger.warning(f"Template file not found: {template_path}")
        return None

    with open(template_path, "r", encoding="utf-8") as f:
        return f.read()


def build_context(template_data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn stored task payload into template variables."""
    context = dict(template_data)

    for key in _TIME_FIELDS:
        value = context.get(key)
        if value:
            context[key] = format_session_time(parse_datetime(value))

    meeting_id = context.get("meeting_id")
    if meeting_id and not context.get("meeting_url"):
        context["meeting_url"] = build_meeting_url(meeting_id)

    return context


def _meeting_sections(context: Dict[str, Any]) -> Dict[str, str]:
    meeting_id = context.get("meeting_id")
    if not meeting_id:
        return {"meeting_section_text": "", "meeting_section_html": ""}

    url = context["meeting_url"]
    return {
        "meeting_section_text": f"Meeting ID: {meeting_id}\nJoin your session: {url}\n",
        "meeting_section_html": (
            f'<p style="margin: 0 0 8px;">Meeting ID: '
            f'<span style="font-family: monospace;">{html.escape(meeting_id)}</span></p>'
            f'<p style="margin: 0 0 16px;"><a href="{html.escape(url)}">Join your session</a></p>'
        ),
    }


def render_email(template_name: str, template_data: Dict[str, Any]) -> RenderedEmail:
    """
    Render subject, plain-text and HTML bodies for a booking email.

    Raises:
        ValueError: Unknown template or missing template variable
    """
    text_template = load_template(template_name, "txt")
    html_template = load_template(template_name, "html")
    if text_template is None or html_template is None:
        raise ValueError(f"Unknown email template: {template_name}")

    context = build_context(template_data)
    sections = _meeting_sections(context)
    escaped = {k: html.escape(str(v)) for k, v in context.items() if v is not None}

    try:
        text_body = text_template.format(**context, **sections, brand=BRAND_NAME)
        html_body = html_template.format(**escaped, **sections, brand=BRAND_NAME)
    except KeyError as e:
        raise ValueError(f"Missing template variable {e} for {template_name}") from e

    subject = SUBJECTS.get(template_name, BRAND_NAME)
    return RenderedEmail(subject=subject, text=text_body, html=html_body)
