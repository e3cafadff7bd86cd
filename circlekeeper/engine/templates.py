"""Review suggestion text using Jinja2.

Template types (one per ReviewType):
    - categorize: Contact has no tier yet
    - maintain: Tiered contact drifting out of touch
    - prune: Tiered contact not heard from in a long time

Usage:
    from circlekeeper.engine.templates import render_suggested_action

    text = render_suggested_action(ReviewType.MAINTAIN, contact, now)
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import jinja2

from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import Contact, ReviewType

logger = get_logger(__name__)


# Template directory
TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "review"
TEMPLATE_SUFFIX = ".txt.j2"

# Jinja2 environment (created once, reused)
_env: Optional[jinja2.Environment] = None


def _get_env() -> jinja2.Environment:
    """Get or create the Jinja2 environment."""
    global _env
    if _env is None:
        _env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined,
        )
    return _env


def render_template(template_name: str, **context: Any) -> str:
    """Render a review template.

    Args:
        template_name: Template name (without extension)
        **context: Template variables

    Returns:
        Rendered text, surrounding whitespace stripped

    Raises:
        jinja2.TemplateNotFound: If template does not exist
    """
    template = _get_env().get_template(f"{template_name}{TEMPLATE_SUFFIX}")
    return template.render(**context).strip()


def render_suggested_action(
    review_type: ReviewType,
    contact: Contact,
    now: datetime,
) -> str:
    """Suggested action text for a review item.

    Args:
        review_type: Why the contact is queued
        contact: The contact
        now: Reference time for "days ago"

    Returns:
        One line of text for the owner
    """
    days_since = None
    if contact.last_interaction_at is not None:
        days_since = max(0, (now - contact.last_interaction_at).days)

    return render_template(
        review_type.value,
        name=contact.name or "this contact",
        days_since=days_since,
        tier=contact.tier.value if contact.tier else None,
    )


def list_templates() -> list[str]:
    """List available template names.

    Returns:
        Sorted list of template names (without extension)
    """
    if not TEMPLATE_DIR.exists():
        return []

    templates = [p.name.replace(TEMPLATE_SUFFIX, "") for p in TEMPLATE_DIR.glob(f"*{TEMPLATE_SUFFIX}")]
    return sorted(templates)


def validate_template(template_name: str) -> list[str]:
    """Validate a template.

    Checks:
        - Template file exists
        - Template parses without errors

    Args:
        template_name: Template name (without extension)

    Returns:
        List of issues (empty if valid)
    """
    issues: list[str] = []

    template_file = TEMPLATE_DIR / f"{template_name}{TEMPLATE_SUFFIX}"
    if not template_file.exists():
        issues.append(f"Template file not found: {template_file}")
        return issues

    try:
        _get_env().get_template(f"{template_name}{TEMPLATE_SUFFIX}")
    except jinja2.TemplateSyntaxError as e:
        issues.append(f"Template syntax error: {e}")

    return issues


def validate_review_templates() -> list[str]:
    """Check that every review type has a template that parses.

    Returns:
        List of issues (empty if every review type can be rendered)
    """
    available = set(list_templates())
    issues: list[str] = []
    for review_type in ReviewType:
        if review_type.value not in available:
            issues.append(f"No template for review type {review_type.value!r} in {TEMPLATE_DIR}")
            continue
        issues.extend(validate_template(review_type.value))
    if issues:
        logger.warning("Review templates incomplete", issues=len(issues))
    return issues
