"""Email templates for moderation notifications.

Each notification kind has a template that knows how to:
1. Produce the subject line
2. Render HTML and plain-text bodies from the template data

Usage:
    from vigil_core.domain.services.email_templates import get_email_template

    template = get_email_template("content-flagged")
    email = template.render("alice", {"content_kind": "COMMENT", "reason": "threat"})
"""

import html
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

OPT_OUT_FOOTER = (
    "You've received this email because you have enabled email notifications. "
    "You can disable these notifications in your account settings."
)

SIGN_OFF = "Best regards,\nThe Moderation Team"


@dataclass(frozen=True)
class RenderedEmail:
    """A fully rendered email.

    Attributes:
        subject: Subject line
        html_body: HTML alternative
        text_body: Plain-text alternative
    """

    subject: str
    html_body: str
    text_body: str


class BaseEmailTemplate(ABC):
    """Abstract base class for notification templates."""

    accent_color = "#e53e3e"

    @property
    @abstractmethod
    def kind(self) -> str:
        """Notification kind this template renders."""
        pass

    @property
    @abstractmethod
    def subject(self) -> str:
        pass

    @abstractmethod
    def paragraphs(self, data: dict[str, Any]) -> list[str]:
        """Body paragraphs (plain text, unescaped) between greeting and sign-off."""
        pass

    def quoted(self, data: dict[str, Any]) -> Optional[str]:
        """Optional highlighted block, e.g. the moderation reason."""
        return None

    def render(self, display_name: str, data: dict[str, Any]) -> RenderedEmail:
        """Render the email for one recipient.

        Args:
            display_name: Recipient name used in the greeting.
            data: Template data (content_kind, reason, ...).

        Returns:
            RenderedEmail with subject, HTML and text bodies.
        """
        paragraphs = self.paragraphs(data)
        quoted = self.quoted(data)
        greeting = f"Dear {display_name},"

        text_parts = [greeting, paragraphs[0]]
        if quoted:
            text_parts.append(f"    {quoted}")
        text_parts.extend(paragraphs[1:])
        text_parts.extend([SIGN_OFF, "--", OPT_OUT_FOOTER])

        e = html.escape
        html_parts = [
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
            f'<h2 style="color: {self.accent_color};">Content Moderation Notification</h2>',
            f"<p>{e(greeting)}</p>",
            f"<p>{e(paragraphs[0])}</p>",
        ]
        if quoted:
            html_parts.append(
                '<div style="background-color: #f8f8f8; padding: 15px; '
                f'border-left: 4px solid {self.accent_color}; margin: 20px 0;">'
                f'<p style="margin: 0;">{e(quoted)}</p></div>'
            )
        html_parts.extend(f"<p>{e(p)}</p>" for p in paragraphs[1:])
        html_parts.extend([
            "<p>Best regards,<br>The Moderation Team</p>",
            '<hr style="border: none; border-top: 1px solid #eaeaea; margin: 20px 0;" />',
            f'<p style="font-size: 12px; color: #666;">{e(OPT_OUT_FOOTER)}</p>',
            "</div>",
        ])

        return RenderedEmail(
            subject=self.subject,
            html_body="\n".join(html_parts),
            text_body="\n\n".join(text_parts),
        )


def _content_label(data: dict[str, Any]) -> str:
    return str(data.get("content_kind") or "content").lower()


class ContentFlaggedTemplate(BaseEmailTemplate):
    """Sent when the classifier flags a user's content."""

    @property
    def kind(self) -> str:
        return "content-flagged"

    @property
    def subject(self) -> str:
        return "Your content has been flagged for moderation"

    def paragraphs(self, data: dict[str, Any]) -> list[str]:
        return [
            f"Your recent {_content_label(data)} has been flagged for moderation "
            "for the following reason:",
            "Our moderation team will review your content as soon as possible. "
            "If your content is found to violate our community guidelines, it may be removed.",
            "If you believe this is an error, please wait for the moderation process to complete.",
            "Thank you for your understanding.",
        ]

    def quoted(self, data: dict[str, Any]) -> Optional[str]:
        return data.get("reason") or "Content flagged by AI moderation."


class ContentApprovedTemplate(BaseEmailTemplate):
    """Sent when an administrator approves flagged content."""

    accent_color = "#38a169"

    @property
    def kind(self) -> str:
        return "content-approved"

    @property
    def subject(self) -> str:
        return "Your content has been approved"

    def paragraphs(self, data: dict[str, Any]) -> list[str]:
        return [
            f"Your {_content_label(data)} that was previously flagged for moderation "
            "has been reviewed and approved.",
            "Thank you for contributing positively to our community.",
        ]


class ContentRejectedTemplate(BaseEmailTemplate):
    """Sent when an administrator rejects flagged content."""

    @property
    def kind(self) -> str:
        return "content-rejected"

    @property
    def subject(self) -> str:
        return "Your content has been rejected"

    def paragraphs(self, data: dict[str, Any]) -> list[str]:
        return [
            f"Your {_content_label(data)} that was flagged for moderation has been "
            "reviewed and rejected for the following reason:",
            "Please review our community guidelines to ensure your future "
            "contributions align with our standards.",
            "Thank you for your understanding.",
        ]

    def quoted(self, data: dict[str, Any]) -> Optional[str]:
        return data.get("reason") or "Content rejected by moderator."


# =============================================================================
# TEMPLATE REGISTRY
# =============================================================================


EMAIL_TEMPLATES: dict[str, type[BaseEmailTemplate]] = {
    "content-flagged": ContentFlaggedTemplate,
    "content-approved": ContentApprovedTemplate,
    "content-rejected": ContentRejectedTemplate,
}


def get_email_template(kind: str) -> BaseEmailTemplate:
    """Get the template for a notification kind.

    Args:
        kind: Notification kind.

    Returns:
        Instantiated email template

    Raises:
        ValueError: If the kind is not recognized
    """
    if kind not in EMAIL_TEMPLATES:
        available = ", ".join(EMAIL_TEMPLATES.keys())
        raise ValueError(
            f"Unknown notification kind: {kind}. Available kinds: {available}"
        )

    return EMAIL_TEMPLATES[kind]()


# =============================================================================
# EXPORTS
# =============================================================================


__all__ = [
    "BaseEmailTemplate",
    "ContentApprovedTemplate",
    "ContentFlaggedTemplate",
    "ContentRejectedTemplate",
    "EMAIL_TEMPLATES",
    "OPT_OUT_FOOTER",
    "RenderedEmail",
    "get_email_template",
]
