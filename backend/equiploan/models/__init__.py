"""Aggregate model imports for Alembic auto-detection."""

from equiploan.models.user import Permission, User, UserPermission, UserRole  # noqa: F401
from equiploan.models.product import Product, ProductInstance  # noqa: F401
from equiploan.models.loan import Loan, LoanEvent, LoanStatus  # noqa: F401
from equiploan.models.volunteer_activity import VolunteerActivity  # noqa: F401
from equiploan.models.audit_log import AuditAction, AuditEntity, AuditLog  # noqa: F401
