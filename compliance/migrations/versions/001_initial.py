"""Initial compliance schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _account_fk(nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(
        "account_id",
        sa.Integer,
        sa.ForeignKey("account.id", ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "account",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
    )

    op.create_table(
        "account_user",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="agent"),
        *_timestamps(),
    )
    op.create_index("ix_account_user_account_id", "account_user", ["account_id"])

    op.create_table(
        "integration_hook",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column("app_id", sa.String(50), nullable=False),
        sa.Column("reference_id", sa.String(255)),
        sa.Column("access_token", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="enabled"),
        sa.Column("settings", sa.JSON),
        *_timestamps(),
    )
    op.create_index("ix_integration_hook_account_id", "integration_hook", ["account_id"])
    op.create_index(
        "ix_integration_hook_app_reference", "integration_hook", ["app_id", "reference_id"]
    )

    op.create_table(
        "contact",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone_number", sa.String(50)),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("country_code", sa.String(10)),
        sa.Column("city", sa.String(100)),
        sa.Column("additional_emails", sa.JSON),
        sa.Column("custom_attributes", sa.JSON),
        sa.Column("redacted_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_contact_account_id", "contact", ["account_id"])
    op.create_index("ix_contact_account_email", "contact", ["account_id", "email"])
    op.create_index("ix_contact_redacted_at", "contact", ["redacted_at"])

    op.create_table(
        "conversation",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column(
            "contact_id", sa.Integer, sa.ForeignKey("contact.id", ondelete="SET NULL")
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("channel", sa.String(50), nullable=False, server_default="web_widget"),
        sa.Column("inbox_name", sa.String(255)),
        sa.Column("assignee_name", sa.String(255)),
        sa.Column("team_name", sa.String(255)),
        sa.Column("priority", sa.String(20)),
        sa.Column("labels", sa.JSON),
        sa.Column("additional_attributes", sa.JSON),
        *_timestamps(),
    )
    op.create_index("ix_conversation_account_id", "conversation", ["account_id"])
    op.create_index("ix_conversation_contact_id", "conversation", ["contact_id"])
    op.create_index(
        "ix_conversation_account_contact", "conversation", ["account_id", "contact_id"]
    )

    op.create_table(
        "message",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column(
            "conversation_id",
            sa.Integer,
            sa.ForeignKey("conversation.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text),
        sa.Column("message_type", sa.String(20), nullable=False, server_default="incoming"),
        sa.Column("private", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sender_type", sa.String(20)),
        sa.Column("sender_name", sa.String(255)),
        sa.Column("content_type", sa.String(30), nullable=False, server_default="text"),
        sa.Column("content_attributes", sa.JSON),
        sa.Column("attachments", sa.JSON),
        *_timestamps(),
    )
    op.create_index("ix_message_account_id", "message", ["account_id"])
    op.create_index("ix_message_conversation", "message", ["conversation_id", "created_at"])

    op.create_table(
        "compliance_job",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("job_type", sa.String(50), nullable=False),
        _account_fk(nullable=True, ondelete="SET NULL"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payload", sa.JSON),
        sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text),
        *_timestamps(),
    )
    op.create_index("ix_compliance_job_job_type", "compliance_job", ["job_type"])
    op.create_index("ix_compliance_job_available_at", "compliance_job", ["available_at"])


def downgrade() -> None:
    op.drop_table("compliance_job")
    op.drop_table("message")
    op.drop_table("conversation")
    op.drop_table("contact")
    op.drop_table("integration_hook")
    op.drop_table("account_user")
    op.drop_table("account")
