"""create crm companies, contacts, emails and areas of activity

Revision ID: 202610010002
Revises: 202610010001
Create Date: 2026-10-01 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010002"
down_revision: str | None = "202610010001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_company",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_company_name", "crm_company", ["name"], unique=False)

    op.create_table(
        "crm_contact",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("mobile_phone", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_contact_name", "crm_contact", ["last_name", "first_name"], unique=False)

    op.create_table(
        "crm_contact_email",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.Column("email_address", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="work"),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contact_id", "email_address", name="uq_crm_contact_email_address_per_contact"),
    )
    op.create_index("ix_crm_contact_email_contact_id", "crm_contact_email", ["contact_id"], unique=False)
    op.create_index("ix_crm_contact_email_address", "crm_contact_email", ["email_address"], unique=False)
    op.create_index(
        "uq_crm_contact_email_primary_per_contact",
        "crm_contact_email",
        ["contact_id"],
        unique=True,
        postgresql_where=sa.text("is_primary = true"),
        sqlite_where=sa.text("is_primary = 1"),
    )

    op.create_table(
        "crm_area_of_activity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("role", sa.String(length=100), nullable=True),
        sa.Column("job_description", sa.Text(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["crm_company.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_area_of_activity_contact_id", "crm_area_of_activity", ["contact_id"], unique=False)
    op.create_index("ix_crm_area_of_activity_company_id", "crm_area_of_activity", ["company_id"], unique=False)
    op.create_index(
        "uq_crm_area_of_activity_primary_per_contact",
        "crm_area_of_activity",
        ["contact_id"],
        unique=True,
        postgresql_where=sa.text("is_primary = true"),
        sqlite_where=sa.text("is_primary = 1"),
    )


def downgrade() -> None:
    op.drop_index("uq_crm_area_of_activity_primary_per_contact", table_name="crm_area_of_activity")
    op.drop_index("ix_crm_area_of_activity_company_id", table_name="crm_area_of_activity")
    op.drop_index("ix_crm_area_of_activity_contact_id", table_name="crm_area_of_activity")
    op.drop_table("crm_area_of_activity")
    op.drop_index("uq_crm_contact_email_primary_per_contact", table_name="crm_contact_email")
    op.drop_index("ix_crm_contact_email_address", table_name="crm_contact_email")
    op.drop_index("ix_crm_contact_email_contact_id", table_name="crm_contact_email")
    op.drop_table("crm_contact_email")
    op.drop_index("ix_crm_contact_name", table_name="crm_contact")
    op.drop_table("crm_contact")
    op.drop_index("ix_crm_company_name", table_name="crm_company")
    op.drop_table("crm_company")
