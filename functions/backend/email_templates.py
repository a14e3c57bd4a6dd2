"""
Localized email bodies (Hebrew and English).

Every caller-supplied value is passed through `escape_html` before it is
interpolated into markup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from shared.constants import BRAND_NAME, CONTACT_SUBJECT_PREFIX, CONTACT_TIMEZONE
from shared.messages import normalize_lang
from shared.types import SubscriptionAction

_HTML_ESCAPES = str.maketrans(
    {"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#039;"}
)

FOOTER_BRAND = "Viraly – Video Director Pro"
FOOTER_TAGLINE = "AI Analysis • Performance • Presence"
BUTTON_STYLE = (
    "display: inline-block; background: #D4A043; color: #000; "
    "text-decoration: none; padding: 14px 32px; border-radius: 8px; "
    "font-weight: 700; font-size: 1rem;"
)


def escape_html(value: str) -> str:
    return (value or "").translate(_HTML_ESCAPES)


def _dir(lang: str) -> str:
    return "rtl" if lang == "he" else "ltr"


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: Optional[str] = None


# Auth emails (signup confirmation, password reset)

AUTH_STRINGS = {
    "signup": {
        "he": {
            "title": "ברוך הבא ל־ Viraly",
            "intro": "אתה רגע לפני כניסה ל־Video Director Pro – מערכת AI מתקדמת לניתוח ושיפור נוכחות מצולמת.",
            "cta_intro": "כדי לאשר את החשבון ולהתחיל, לחץ על הכפתור:",
            "cta_button": "כניסה לחשבון",
            "fallback": "פתח קישור אימות",
            "ignore": "אם לא ביקשת להצטרף ל-Viraly, ניתן להתעלם מהמייל.",
            "subject": f"אישור חשבון | {BRAND_NAME}",
        },
        "en": {
            "title": "Welcome to Viraly",
            "intro": "You're moments away from Video Director Pro – AI-powered analysis and feedback for your on-camera presence.",
            "cta_intro": "To confirm your account and get started, click the button:",
            "cta_button": "Log in to account",
            "fallback": "Open verification link",
            "ignore": "If you did not request to join Viraly, you can ignore this email.",
            "subject": f"Account Confirmation | {BRAND_NAME}",
        },
    },
    "recovery": {
        "he": {
            "title": "איפוס סיסמה",
            "intro": "ביקשת לאפס את סיסמת החשבון ב־Viraly - Video Director Pro.",
            "cta_intro": "לחץ על הכפתור כדי לבחור סיסמה חדשה:",
            "cta_button": "איפוס סיסמה",
            "fallback": "פתח קישור איפוס",
            "ignore": "אם לא ביקשת לאפס סיסמה, ניתן להתעלם מהמייל.",
            "subject": f"איפוס סיסמה | {BRAND_NAME}",
        },
        "en": {
            "title": "Reset your password",
            "intro": "You requested to reset your password for Viraly - Video Director Pro.",
            "cta_intro": "Click the button below to choose a new password:",
            "cta_button": "Reset password",
            "fallback": "Open reset link",
            "ignore": "If you did not request a password reset, you can ignore this email.",
            "subject": f"Password Reset | {BRAND_NAME}",
        },
    },
}

BUTTON_FALLBACK_PROMPT = {
    "he": "אם הכפתור לא עובד, לחץ כאן:",
    "en": "If the button doesn't work, click here:",
}


def render_auth_email(
    email_type: str,
    lang: str,
    action_link: str,
    fallback_url: Optional[str] = None,
) -> RenderedEmail:
    """Signup or recovery email. The fallback link defaults to the action link."""
    lang = normalize_lang(lang)
    strings = AUTH_STRINGS["recovery" if email_type == "recovery" else "signup"][lang]
    direction = _dir(lang)
    link_url = fallback_url or action_link
    html = f"""<!DOCTYPE html>
<html dir="{direction}" lang="{lang}">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin:0; padding:0; background:#1a1a1a; font-family: Arial, sans-serif; direction: {direction}; text-align: center;">
  <div style="max-width: 600px; margin: 0 auto; padding: 24px; background: #1a1a1a; color: #fff; text-align: center;">
    <h1 style="margin: 0 0 20px 0; font-size: 1.75rem; font-weight: 700; color: #fff;">{strings['title']}</h1>
    <p style="margin: 0 0 24px 0; line-height: 1.6; color: #fff;">{strings['intro']}</p>
    <p style="margin: 0 0 16px 0; line-height: 1.6; color: #fff;">{strings['cta_intro']}</p>
    <p style="margin: 0 0 24px 0;">
      <a href="{escape_html(action_link)}" style="{BUTTON_STYLE}">{strings['cta_button']}</a>
    </p>
    <p style="margin: 0 0 24px 0; font-size: 0.9rem; color: #ccc;">
      {BUTTON_FALLBACK_PROMPT[lang]} <a href="{escape_html(link_url)}" style="color: #D4A043;">{strings['fallback']}</a>
    </p>
    <p style="margin: 0 0 32px 0; font-size: 0.85rem; color: #999;">{strings['ignore']}</p>
    <p style="margin: 0; font-size: 0.85rem; color: #888;">
      {FOOTER_BRAND}<br>
      <span style="color: #D4A043;">{FOOTER_TAGLINE}</span>
    </p>
  </div>
</body>
</html>"""
    return RenderedEmail(subject=strings["subject"], html=html)


# Contact form

CONTACT_LABELS = {
    "he": {
        "header": "הודעה חדשה מטופס יצירת קשר",
        "full_name": "שם מלא",
        "email": "אימייל",
        "phone": "טלפון",
        "subject": "נושא",
        "message": "הודעה",
        "source_page": "דף מקור",
        "date_time": "תאריך ושעה",
        "footer_sent": "הודעה זו נשלחה מטופס יצירת קשר באתר Viraly - Video Director Pro",
        "footer_reply": "ניתן להגיב ישירות למייל זה - התשובה תגיע ל-{email}",
    },
    "en": {
        "header": "New message from contact form",
        "full_name": "Full Name",
        "email": "Email",
        "phone": "Phone",
        "subject": "Subject",
        "message": "Message",
        "source_page": "Source URL",
        "date_time": "Date and time",
        "footer_sent": "This message was sent from the contact form on Viraly - Video Director Pro website",
        "footer_reply": "You can reply directly to this email – replies will be sent to {email}",
    },
}

CONTACT_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f9f9f9; }
    .header { background-color: #D4A043; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0; }
    .content { background-color: white; padding: 20px; border-radius: 0 0 8px 8px; }
    .field { margin-bottom: 15px; }
    .label { font-weight: bold; color: #555; margin-bottom: 5px; display: block; }
    .value { color: #333; padding: 8px; background-color: #f5f5f5; border-radius: 4px; }
    .message-box { padding: 15px; background-color: #f0f0f0; border-left: 4px solid #D4A043; margin-top: 10px; white-space: pre-wrap; }
    .footer { margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }
"""


def format_contact_timestamp(when: datetime, lang: str) -> str:
    local = when.astimezone(ZoneInfo(CONTACT_TIMEZONE))
    if lang == "en":
        return local.strftime("%m/%d/%Y, %I:%M %p")
    return local.strftime("%d.%m.%Y, %H:%M")


def _contact_field(label: str, value_html: str, css_class: str = "value") -> str:
    return (
        '<div class="field">'
        f'<span class="label">{label}:</span>'
        f'<div class="{css_class}">{value_html}</div>'
        "</div>"
    )


def render_contact_email(
    *,
    full_name: str,
    email: str,
    subject: str,
    message: str,
    lang: str,
    submitted_at: datetime,
    phone: Optional[str] = None,
    source_url: Optional[str] = None,
) -> RenderedEmail:
    lang = normalize_lang(lang)
    labels = CONTACT_LABELS[lang]
    date = format_contact_timestamp(submitted_at, lang)
    safe_email = escape_html(email)

    fields = [
        _contact_field(labels["full_name"], escape_html(full_name)),
        _contact_field(
            labels["email"], f'<a href="mailto:{safe_email}">{safe_email}</a>'
        ),
    ]
    if phone:
        fields.append(_contact_field(labels["phone"], escape_html(phone)))
    fields.append(_contact_field(labels["subject"], escape_html(subject)))
    fields.append(_contact_field(labels["message"], escape_html(message), "message-box"))
    if source_url:
        safe_url = escape_html(source_url)
        fields.append(
            _contact_field(labels["source_page"], f'<a href="{safe_url}">{safe_url}</a>')
        )
    fields.append(_contact_field(labels["date_time"], date))

    html = f"""<!DOCTYPE html>
<html dir="{_dir(lang)}" lang="{lang}">
  <head>
    <meta charset="UTF-8">
    <style>{CONTACT_STYLE}</style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1 style="margin: 0;">{labels['header']}</h1></div>
      <div class="content">
        {"".join(fields)}
        <div class="footer">
          <p>{labels['footer_sent']}</p>
          <p>{labels['footer_reply'].format(email=safe_email)}</p>
        </div>
      </div>
    </div>
  </body>
</html>"""

    lines = [
        labels["header"],
        "",
        f"{labels['full_name']}: {full_name}",
        f"{labels['email']}: {email}",
    ]
    if phone:
        lines.append(f"{labels['phone']}: {phone}")
    lines += [
        f"{labels['subject']}: {subject}",
        "",
        f"{labels['message']}:",
        message,
        "",
    ]
    if source_url:
        lines.append(f"{labels['source_page']}: {source_url}")
    lines += [
        f"{labels['date_time']}: {date}",
        "",
        "---",
        labels["footer_reply"].format(email=email),
    ]
    return RenderedEmail(
        subject=f"{CONTACT_SUBJECT_PREFIX} {subject}",
        html=html,
        text="\n".join(lines),
    )


# Subscription action confirmations

SUBSCRIPTION_STRINGS = {
    "he": {
        "welcome": "ברוך הבא ל־Viraly Video Director Pro – מערכת AI מתקדמת לניתוח ושיפור נוכחות מצולמת.",
        SubscriptionAction.PAUSE: (
            "השהיית מנוי | Viraly – Video Director Pro",
            "אנו מאשרים כי ביקשת להשהות את המנוי. ההשהייה תיכנס לתוקף בסיום התקופה.",
        ),
        SubscriptionAction.CANCEL: (
            "ביטול מנוי | Viraly – Video Director Pro",
            "אנו מאשרים כי ביקשת לבטל את המנוי. הביטול ייכנס לתוקף בסיום התקופה.",
        ),
        SubscriptionAction.RESUME: (
            "חידוש מנוי | Viraly – Video Director Pro",
            "אנו מאשרים כי ביקשת לחדש את המנוי.",
        ),
    },
    "en": {
        "welcome": "Welcome to Viraly Video Director Pro – Advanced AI system for analyzing and improving on-camera presence.",
        SubscriptionAction.PAUSE: (
            "Subscription Paused | Viraly – Video Director Pro",
            "We confirm that you requested to pause your subscription. The pause will take effect at the end of the current period.",
        ),
        SubscriptionAction.CANCEL: (
            "Subscription Canceled | Viraly – Video Director Pro",
            "We confirm that you requested to cancel your subscription. The cancellation will take effect at the end of the current period.",
        ),
        SubscriptionAction.RESUME: (
            "Subscription Resumed | Viraly – Video Director Pro",
            "We confirm that you requested to resume your subscription.",
        ),
    },
}


def render_subscription_action_email(
    action: SubscriptionAction, lang: Optional[str]
) -> RenderedEmail:
    lang = normalize_lang(lang)
    strings = SUBSCRIPTION_STRINGS[lang]
    subject, confirm_line = strings[action]
    direction = _dir(lang)
    align = "right" if lang == "he" else "left"
    html = f"""<!DOCTYPE html>
<html dir="{direction}" lang="{lang}">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin:0; padding:0; background:#1a1a1a; font-family: Arial, sans-serif; direction: {direction}; text-align: {align};">
  <div style="max-width: 600px; margin: 0 auto; padding: 24px; background: #1a1a1a; color: #fff;">
    <p style="margin: 0 0 24px 0; line-height: 1.6; color: #fff;">{strings['welcome']}</p>
    <p style="margin: 0 0 32px 0; line-height: 1.6; color: #fff;">{escape_html(confirm_line)}</p>
    <p style="margin: 0; font-size: 0.85rem; color: #888;">{FOOTER_BRAND}</p>
  </div>
</body>
</html>"""
    return RenderedEmail(subject=subject, html=html, text=confirm_line)


# Admin broadcast

def render_broadcast_email(title: str, message: str) -> RenderedEmail:
    html = f"""<!DOCTYPE html>
<html dir="rtl" lang="he">
  <head><meta charset="UTF-8"></head>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #D4A043; color: white; padding: 16px; text-align: center; border-radius: 8px 8px 0 0;">
      <h1 style="margin: 0;">{escape_html(title)}</h1>
    </div>
    <div style="background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; white-space: pre-wrap;">{escape_html(message)}</div>
    <p style="margin-top: 20px; font-size: 12px; color: #666;">{BRAND_NAME}</p>
  </body>
</html>"""
    return RenderedEmail(subject=title, html=html, text=message)
