from alembic import op
import sqlalchemy as sa

revision = "0001_users_listings_documents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("verification_level", sa.String(length=20), nullable=False, server_default="NONE"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("kyc_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),

        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("location", sa.String(length=300), nullable=False, server_default=""),
        sa.Column("price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
        sa.Column("media_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_legal_documents", sa.Boolean(), nullable=False, server_default=sa.false()),

        sa.Column("moderation_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("explicit_priority", sa.String(length=20), nullable=False, server_default="NONE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),

        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("content_hash", sa.String(length=80), nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint(
            "moderation_status <> 'APPROVED' OR is_active",
            name="ck_listing_approved_is_active",
        ),
        sa.CheckConstraint(
            "moderation_status <> 'REJECTED' OR "
            "(NOT is_active AND rejection_reason IS NOT NULL AND rejection_reason <> '')",
            name="ck_listing_rejected_has_reason",
        ),
    )
    op.create_index("ix_listings_queue", "listings", ["moderation_status", "submitted_at", "id"])
    op.create_index("ix_listings_owner_id", "listings", ["owner_id"])

    op.create_table(
        "verification_documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("document_type", sa.String(length=60), nullable=False),
        sa.Column("document_url", sa.String(length=500), nullable=False),
        sa.Column("document_number", sa.String(length=120), nullable=True),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("superseded_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_verification_documents_user_type", "verification_documents", ["user_id", "document_type"])


def downgrade():
    op.drop_index("ix_verification_documents_user_type", table_name="verification_documents")
    op.drop_table("verification_documents")
    op.drop_index("ix_listings_owner_id", table_name="listings")
    op.drop_index("ix_listings_queue", table_name="listings")
    op.drop_table("listings")
    op.drop_table("users")
