from alembic import op
import sqlalchemy as sa

revision = "0003_idempotency_keys"
down_revision = "0002_audit_notifications_outbox"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("reviewer_id", sa.String(), nullable=False),
        sa.Column("key", sa.String(length=200), nullable=False),
        sa.Column("request_hash", sa.String(length=80), nullable=False),
        sa.Column("response", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("reviewer_id", "key", name="uq_idempotency_reviewer_key"),
    )
    op.create_index("ix_idempotency_keys_reviewer_created", "idempotency_keys", ["reviewer_id", "created_at"])


def downgrade():
    op.drop_index("ix_idempotency_keys_reviewer_created", table_name="idempotency_keys")
    op.drop_table("idempotency_keys")
