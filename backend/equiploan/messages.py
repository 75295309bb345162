"""Message catalog for client-facing error text.

Every error message the API returns is looked up here by id, so a new
language is a new dict rather than a parallel set of validators.

    message("loan_limit_reached", limit=3)
"""

from equiploan.config import settings

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        # Lookups
        "user_not_found": "User not found or inactive",
        "volunteer_not_found": "Volunteer not found or inactive",
        "product_not_found": "Product not found",
        "instance_not_found": "Product instance not found",
        "loan_not_found": "Loan not found",
        "activity_not_found": "Volunteer activity not found",
        "audit_log_not_found": "Audit log entry not found",
        # Conflicts
        "email_taken": "Email is already registered",
        "barcode_taken": "Barcode is already in use",
        "instance_not_available": "Product instance is not available",
        "instance_on_loan": "Product instance is already on loan",
        "loan_limit_reached": "User already has the maximum of {limit} active loans",
        "product_has_active_loans": "Product has instances that are currently on loan",
        "product_has_loan_history": "Product has instances with loan history",
        "instance_has_loan_history": "Product instance has loan history",
        "user_has_history": "User has loan or volunteer history and cannot be deleted",
        # Bad requests
        "loan_not_active": "Loan is already returned or not active",
        "hours_out_of_range": "hours must be between {low} and {high}",
        "future_activity_date": "Activity date cannot be in the future",
        "unknown_permissions": "Unknown permissions: {names}",
        "invalid_sort": "Cannot sort by '{field}'",
        "invalid_report_type": "Unknown report type '{report_type}'",
        "persistence_failed": "The operation could not be completed",
        # Auth
        "invalid_credentials": "Invalid credentials",
        "invalid_token": "Invalid or expired token",
        "invalid_refresh_token": "Invalid refresh token",
        "current_password_incorrect": "Current password is incorrect",
        "unidentified_caller": "Cannot verify permissions for an unidentified caller",
        "missing_permissions": "Missing permissions: {names}",
        "self_delete": "You cannot delete your own account",
        "self_deactivate": "You cannot deactivate your own account",
        "volunteer_own_only": "Volunteers may only record or view their own activities",
    },
    "he": {
        "user_not_found": "המשתמש לא נמצא או אינו פעיל",
        "volunteer_not_found": "המתנדב לא נמצא או אינו פעיל",
        "product_not_found": "המוצר לא נמצא",
        "instance_not_found": "פריט המוצר לא נמצא",
        "loan_not_found": "ההשאלה לא נמצאה",
        "activity_not_found": "פעילות ההתנדבות לא נמצאה",
        "audit_log_not_found": "רשומת הביקורת לא נמצאה",
        "email_taken": "כתובת הדוא\"ל כבר רשומה",
        "barcode_taken": "הברקוד כבר בשימוש",
        "instance_not_available": "פריט המוצר אינו זמין",
        "instance_on_loan": "פריט המוצר כבר מושאל",
        "loan_limit_reached": "למשתמש כבר יש את המקסימום של {limit} השאלות פעילות",
        "product_has_active_loans": "למוצר יש פריטים מושאלים כרגע",
        "product_has_loan_history": "למוצר יש פריטים עם היסטוריית השאלות",
        "instance_has_loan_history": "לפריט המוצר יש היסטוריית השאלות",
        "user_has_history": "למשתמש יש היסטוריית השאלות או התנדבות ולא ניתן למחוק אותו",
        "loan_not_active": "ההשאלה כבר הוחזרה או אינה פעילה",
        "hours_out_of_range": "מספר השעות חייב להיות בין {low} ל-{high}",
        "future_activity_date": "תאריך הפעילות אינו יכול להיות בעתיד",
        "unknown_permissions": "הרשאות לא מוכרות: {names}",
        "invalid_sort": "לא ניתן למיין לפי '{field}'",
        "invalid_report_type": "סוג דוח לא מוכר '{report_type}'",
        "persistence_failed": "לא ניתן היה להשלים את הפעולה",
        "invalid_credentials": "פרטי התחברות שגויים",
        "invalid_token": "אסימון לא תקין או שפג תוקפו",
        "invalid_refresh_token": "אסימון רענון לא תקין",
        "current_password_incorrect": "הסיסמה הנוכחית שגויה",
        "unidentified_caller": "לא ניתן לאמת הרשאות עבור משתמש לא מזוהה",
        "missing_permissions": "חסרות הרשאות: {names}",
        "self_delete": "לא ניתן למחוק את החשבון שלך",
        "self_deactivate": "לא ניתן להשבית את החשבון שלך",
        "volunteer_own_only": "מתנדבים רשאים לרשום ולצפות רק בפעילויות שלהם",
    },
}


def message(key: str, language: str | None = None, **params) -> str:
    """Return the catalog text for `key`, falling back to English."""
    catalog = MESSAGES.get(language or settings.default_language, MESSAGES["en"])
    template = catalog.get(key) or MESSAGES["en"][key]
    return template.format(**params) if params else template
