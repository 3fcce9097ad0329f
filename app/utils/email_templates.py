"""
Email Templates

Renders the notification emails. Each template returns an HTML body and
a plain-text fallback; both go out in one multipart/alternative message.

Templates:
    notification         - a single notification
    notification-digest  - unread notifications grouped by type
"""

from html import escape
from typing import Any, Callable, Dict, List, Tuple

from app.core.config import settings

RenderedEmail = Tuple[str, str]  # (html, text)


# ============================================================
# LAYOUT
# ============================================================

def _layout(heading: str, body_html: str) -> str:
    """Shared card layout: header band, body, footer."""
    project = escape(settings.PROJECT_NAME)
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0"/>
    <title>{escape(heading)}</title>
    </head>
    <body style="
    margin: 0;
    padding: 0;
    background-color: #f3f4f6;
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
    color: #111827;
    ">

    <table width="100%" cellpadding="0" cellspacing="0" role="presentation">
        <tr>
        <td align="center" style="padding: 40px 16px;">

            <table width="100%" cellpadding="0" cellspacing="0" style="
            max-width: 600px;
            background-color: #ffffff;
            border-radius: 14px;
            box-shadow: 0 10px 25px rgba(0,0,0,0.08);
            overflow: hidden;
            ">

            <tr>
                <td style="
                background: linear-gradient(135deg, #4f46e5, #7c3aed);
                padding: 32px;
                text-align: center;
                ">
                <h1 style="margin: 0; font-size: 22px; color: #ffffff; font-weight: 700;">
                    {project}
                </h1>
                </td>
            </tr>

            <tr>
                <td style="padding: 32px;">
                <h2 style="margin-top: 0; font-size: 20px; font-weight: 600; color: #111827;">
                    {escape(heading)}
                </h2>
                {body_html}
                </td>
            </tr>

            <tr>
                <td style="
                padding: 20px;
                text-align: center;
                background-color: #f9fafb;
                border-top: 1px solid #e5e7eb;
                ">
                <p style="margin: 0; font-size: 12px; color: #9ca3af;">
                    &copy; {project} &middot; Automated message &middot; Do not reply
                </p>
                </td>
            </tr>

            </table>

        </td>
        </tr>
    </table>

    </body>
    </html>
    """


def _absolute_url(url: str) -> str:
    """Deep links are stored relative to the frontend."""
    if url.startswith(("http://", "https://")) or not settings.FRONTEND_URL:
        return url
    return f"{settings.FRONTEND_URL.rstrip('/')}/{url.lstrip('/')}"


def _button(url: str, label: str) -> str:
    return f"""
    <p style="margin: 28px 0; text-align: center;">
        <a href="{escape(_absolute_url(url), quote=True)}" style="
        display: inline-block;
        padding: 12px 24px;
        background-color: #4f46e5;
        color: #ffffff;
        border-radius: 8px;
        text-decoration: none;
        font-weight: 600;
        ">{escape(label)}</a>
    </p>
    """


# ============================================================
# TEMPLATES
# ============================================================

def render_notification(data: Dict[str, Any]) -> RenderedEmail:
    title = data.get("title", "")
    message = data.get("message", "")
    action_url = data.get("action_url")
    action_text = data.get("action_text") or "Open"

    body = f'<p style="font-size: 15px; color: #374151; line-height: 1.6;">{escape(message)}</p>'
    if action_url:
        body += _button(action_url, action_text)

    text = f"{settings.PROJECT_NAME} - {title}\n\n{message}\n"
    if action_url:
        text += f"\n{action_text}: {_absolute_url(action_url)}\n"

    return _layout(title, body), text


def render_digest(data: Dict[str, Any]) -> RenderedEmail:
    """
    data:
        user_name: Greeting name
        frequency: "daily" | "weekly"
        total: Number of notifications in the digest
        groups: {type: [{title, message, action_url}, ...]}
    """
    user_name = data.get("user_name") or "there"
    frequency = data.get("frequency", "daily")
    total = data.get("total", 0)
    groups: Dict[str, List[Dict[str, Any]]] = data.get("groups", {})

    heading = f"Your {frequency} digest"
    intro = f"Hi {user_name}, you have {total} unread update{'s' if total != 1 else ''}."

    sections = []
    text_lines = [f"{settings.PROJECT_NAME} - {heading}", "", intro, ""]

    for notification_type, items in groups.items():
        label = notification_type.replace("_", " ").title()
        rows = "".join(
            f'<li style="margin-bottom: 10px;"><strong>{escape(item.get("title", ""))}</strong>'
            f'<br/><span style="color: #6b7280;">{escape(item.get("message", ""))}</span></li>'
            for item in items
        )
        sections.append(
            f'<h3 style="font-size: 16px; color: #4f46e5; margin: 24px 0 8px;">{escape(label)} ({len(items)})</h3>'
            f'<ul style="padding-left: 18px; font-size: 14px; color: #374151;">{rows}</ul>'
        )

        text_lines.append(f"{label} ({len(items)})")
        text_lines.extend(f"  - {item.get('title', '')}" for item in items)
        text_lines.append("")

    body = f'<p style="font-size: 15px; color: #374151;">{escape(intro)}</p>' + "".join(sections)
    if settings.FRONTEND_URL:
        body += _button("/notifications", "View all notifications")

    return _layout(heading, body), "\n".join(text_lines)


TEMPLATES: Dict[str, Callable[[Dict[str, Any]], RenderedEmail]] = {
    "notification": render_notification,
    "notification-digest": render_digest,
}


def render_email(template: str, data: Dict[str, Any]) -> RenderedEmail:
    """
    Render a named template.

    Raises:
        ValueError: Unknown template name
    """
    renderer = TEMPLATES.get(template)
    if renderer is None:
        raise ValueError(f"Unknown email template '{template}'")
    return renderer(data)
