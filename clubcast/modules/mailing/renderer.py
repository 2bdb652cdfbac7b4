"""
Campaign Renderer
=================

Wraps a plain-text campaign body into an HTML email with inline CSS.
Each non-empty line of the body becomes a paragraph. Uses EMAIL_STYLE
config for theming.
"""

import re
import logging

from markupsafe import escape

from clubcast.core import get_config_value
from .principal import AssociationAdmin, ClubAdmin

logger = logging.getLogger(__name__)

DEFAULT_STYLE = {
    'bg': '#f4f6f8',
    'card_bg': '#ffffff',
    'header_bg': '#1f3a5f',
    'header_text': '#ffffff',
    'text': '#1f2933',
    'text_secondary': '#616e7c',
    'border': '#d9e2ec',
    'footer_bg': '#f4f6f8',
    'font': "'Helvetica Neue', Arial, sans-serif",
}


def _get_style():
    """Get email style from app config or defaults"""
    style = dict(DEFAULT_STYLE)
    style.update(get_config_value('EMAIL_STYLE', {}) or {})
    return style


def sender_label(principal):
    """Source line shown to recipients: Association, Club or Sponsor <tier>"""
    if isinstance(principal, AssociationAdmin):
        return 'Association'
    if isinstance(principal, ClubAdmin):
        return 'Club'
    return f"Sponsor {principal.tier or ''}".strip()


def _render_inline(text):
    """Convert **bold** and *italic* markdown to HTML tags"""
    text = re.sub(r'\*\*(.*?)\*\*', r'<strong>\1</strong>', text)
    text = re.sub(r'\*(.*?)\*', r'<em>\1</em>', text)
    return text


def render_text(subject, body, source):
    """Plain-text alternative of a campaign"""
    return f"{subject}\n\n{body}\n\n-- \n{source}"


def render_message(subject, body, source):
    """Render a campaign into a complete HTML email.

    Args:
        subject: campaign subject, used as the header line
        body: plain text, newline separated paragraphs
        source: sender label from sender_label()

    Returns:
        Complete HTML email string with all inline CSS
    """
    style = _get_style()
    brand = get_config_value('EMAIL_BRAND_NAME', 'Clubcast')

    paragraphs = [line.strip() for line in body.split('\n') if line.strip()]
    body_html = '\n            '.join(
        f'<p style="font-size:15px;margin:0 0 14px 0;line-height:1.6;color:{style["text"]};">'
        f'{_render_inline(str(escape(paragraph)))}</p>'
        for paragraph in paragraphs
    )

    return f'''<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(subject)}</title>
</head>
<body style="margin:0;padding:0;background-color:{style['bg']};font-family:{style['font']};">
    <div style="max-width:560px;margin:0 auto;padding:24px;">
        <div style="background:{style['card_bg']};border:1px solid {style['border']};">
            <div style="background:{style['header_bg']};color:{style['header_text']};padding:20px 24px;">
                <p style="margin:0;font-size:18px;">{escape(subject)}</p>
            </div>
            <div style="padding:28px 24px;">
            {body_html}
            </div>
            <div style="background:{style['footer_bg']};padding:14px;text-align:center;font-size:12px;color:{style['text_secondary']};border-top:1px solid {style['border']};">
                <p style="margin:0;">{escape(source)} &middot; {escape(brand)}</p>
            </div>
        </div>
    </div>
</body>
</html>'''
