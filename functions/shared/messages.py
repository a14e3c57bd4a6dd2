"""
Localized user-facing error and status messages (Hebrew and English).
"""

from __future__ import annotations

from shared.constants import DEFAULT_LANGUAGE

MESSAGES: dict[str, dict[str, str]] = {
    "he": {
        "too_many_requests": "יותר מדי בקשות. אנא נסה שוב בעוד כמה דקות.",
        "missing_fields": "נא למלא את כל השדות הנדרשים",
        "invalid_email": "כתובת אימייל לא תקינה",
        "message_too_short": "ההודעה חייבת להכיל לפחות 20 תווים",
        "email_not_configured": "שירות המייל לא מוגדר. אנא פנה למנהל המערכת.",
        "send_failed": "אירעה שגיאה בשליחת ההודעה. אנא נסה שוב מאוחר יותר.",
        "unexpected_error": "אירעה שגיאה בלתי צפויה. אנא נסה שוב מאוחר יותר.",
        "not_authenticated": "לא מאומת",
        "server_error": "שגיאת שרת",
        "status_error": "שגיאה בקבלת סטטוס מנוי",
        "update_error": "שגיאה בעדכון מנוי",
        "no_active_subscription": "לא נמצא מנוי פעיל",
        "no_subscription": "לא נמצא מנוי",
        "already_canceled": "המנוי כבר בוטל",
        "already_paused": "המנוי כבר מושהה",
        "not_paused": "המנוי לא מושהה",
        "payment_not_confirmed": "התשלום לא אושר אצלנו. המנוי נשאר ללא שינוי. אנא בצע תשלום מחדש.",
        "payment_confirmed": "התשלום התקבל והמנוי עודכן בהצלחה.",
        "payment_failed": "התשלום נכשל. המנוי נשאר ללא שינוי.",
    },
    "en": {
        "too_many_requests": "Too many requests. Please try again in a few minutes.",
        "missing_fields": "Please fill in all required fields",
        "invalid_email": "Invalid email address",
        "message_too_short": "The message must contain at least 20 characters",
        "email_not_configured": "Email service is not configured. Please contact the administrator.",
        "send_failed": "An error occurred while sending the message. Please try again later.",
        "unexpected_error": "An unexpected error occurred. Please try again later.",
        "not_authenticated": "Not authenticated",
        "server_error": "Server error",
        "status_error": "Error fetching subscription status",
        "update_error": "Error updating subscription",
        "no_active_subscription": "No active subscription found",
        "no_subscription": "No subscription found",
        "already_canceled": "The subscription is already canceled",
        "already_paused": "The subscription is already paused",
        "not_paused": "The subscription is not paused",
        "payment_not_confirmed": "We could not confirm the payment. Your subscription is unchanged. Please try paying again.",
        "payment_confirmed": "Payment received and your subscription was updated.",
        "payment_failed": "The payment failed. Your subscription is unchanged.",
    },
}


def normalize_lang(lang: str | None) -> str:
    return "en" if lang == "en" else DEFAULT_LANGUAGE


def t(key: str, lang: str | None = None) -> str:
    return MESSAGES[normalize_lang(lang)][key]
