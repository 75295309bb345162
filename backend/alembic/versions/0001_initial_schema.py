"""Initial schema: users, permissions, catalog, loans, volunteering, audit.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
    python -m equiploan.cli seed-permissions
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Identity & permissions ───────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(30)),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "WORKER", "VOLUNTEER", "CLIENT", name="userrole"),
            server_default="CLIENT",
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("last_login", sa.DateTime()),
        sa.Column("refresh_token_hash", sa.String(64)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(255)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission_id", sa.String(36), sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("granted_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("granted_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"])

    # ── Equipment catalog ────────────────────────────────────

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("manufacturer", sa.String(255)),
        sa.Column("model", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_category", "products", ["category"])

    op.create_table(
        "product_instances",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("barcode", sa.String(100), nullable=False),
        sa.Column("serial_number", sa.String(100)),
        sa.Column("condition", sa.String(30), server_default="good"),
        sa.Column("is_available", sa.Boolean(), server_default=sa.true()),
        sa.Column("location", sa.String(255)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_product_instances_product_id", "product_instances", ["product_id"])
    op.create_index("ix_product_instances_barcode", "product_instances", ["barcode"], unique=True)
    op.create_index("ix_product_instances_is_available", "product_instances", ["is_available"])

    # ── Lending ──────────────────────────────────────────────

    op.create_table(
        "loans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_instance_id", sa.String(36), sa.ForeignKey("product_instances.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "OVERDUE", "RETURNED", "LOST", name="loanstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("loan_date", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expected_return_date", sa.DateTime()),
        sa.Column("actual_return_date", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_loans_user_id", "loans", ["user_id"])
    op.create_index("ix_loans_product_instance_id", "loans", ["product_instance_id"])
    op.create_index("ix_loans_status", "loans", ["status"])
    op.create_index("ix_loans_expected_return_date", "loans", ["expected_return_date"])

    op.create_table(
        "loan_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("loan_id", sa.String(36), sa.ForeignKey("loans.id"), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("text", sa.Text()),
        sa.Column("recorded_by", sa.String(36)),
        sa.Column("recorded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_loan_events_loan_id", "loan_events", ["loan_id"])
    op.create_index("ix_loan_events_kind", "loan_events", ["kind"])
    op.create_index("ix_loan_events_recorded_at", "loan_events", ["recorded_at"])

    # ── Volunteering ─────────────────────────────────────────

    op.create_table(
        "volunteer_activities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("volunteer_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("activity_type", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_volunteer_activities_volunteer_id", "volunteer_activities", ["volunteer_id"])
    op.create_index("ix_volunteer_activities_activity_type", "volunteer_activities", ["activity_type"])
    op.create_index("ix_volunteer_activities_date", "volunteer_activities", ["date"])

    # ── Audit trail ──────────────────────────────────────────

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100)),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("user_id", sa.String(36)),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("endpoint", sa.String(500)),
        sa.Column("method", sa.String(10)),
        sa.Column("status_code", sa.Integer()),
        sa.Column("execution_time", sa.Integer()),
        sa.Column("error_message", sa.Text()),
        sa.Column("metadata", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    for column in ("action", "entity_type", "entity_id", "user_id", "status_code", "created_at"):
        op.create_index(f"ix_audit_logs_{column}", "audit_logs", [column])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("volunteer_activities")
    op.drop_table("loan_events")
    op.drop_table("loans")
    op.drop_table("product_instances")
    op.drop_table("products")
    op.drop_table("user_permissions")
    op.drop_table("permissions")
    op.drop_table("users")
    sa.Enum(name="loanstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
