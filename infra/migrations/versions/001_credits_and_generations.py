"""Credit balances, ledger procedures and generation records

Revision ID: 001
Revises:
Create Date: 2026-01-12 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create credit and generation tables plus the ledger procedures."""

    op.create_table('user_credits',
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('credits', sa.Integer(), server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.CheckConstraint('credits >= 0', name='ck_user_credits_non_negative'),
    )

    # Append-only audit of generation attempts
    op.create_table('generations',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('user_email', sa.String(320), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('cost_in_credits', sa.Integer(), server_default='0', nullable=False),
        sa.Column('provider', sa.String(64), nullable=False),
        sa.Column('model', sa.String(128), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('image_url', sa.String(2048), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('success', 'failed')", name='ck_generations_status'),
        sa.Index('idx_generations_user_email_created_at', 'user_email', 'created_at'),
        sa.Index('idx_generations_status', 'status'),
    )

    # The conditional UPDATE is the atomic step: concurrent consumes for one
    # user serialize on the row lock and none can take the balance below 0.
    op.execute("""
        CREATE OR REPLACE FUNCTION consume_credit(p_user_id text)
        RETURNS integer
        LANGUAGE plpgsql
        AS $$
        DECLARE
            v_remaining integer;
        BEGIN
            UPDATE user_credits
               SET credits = credits - 1,
                   updated_at = now()
             WHERE user_id = p_user_id
               AND credits >= 1
            RETURNING credits INTO v_remaining;
            RETURN v_remaining;
        END;
        $$;
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION refund_credit(p_user_id text)
        RETURNS integer
        LANGUAGE plpgsql
        AS $$
        DECLARE
            v_balance integer;
        BEGIN
            INSERT INTO user_credits (user_id, credits)
            VALUES (p_user_id, 1)
            ON CONFLICT (user_id) DO UPDATE
               SET credits = user_credits.credits + 1,
                   updated_at = now()
            RETURNING credits INTO v_balance;
            RETURN v_balance;
        END;
        $$;
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION get_credit_balance(p_user_id text)
        RETURNS integer
        LANGUAGE sql
        STABLE
        AS $$
            SELECT COALESCE((SELECT credits FROM user_credits WHERE user_id = p_user_id), 0);
        $$;
    """)

    # Generation records are never updated or deleted
    op.execute("""
        CREATE OR REPLACE FUNCTION generations_append_only()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'generations is append-only';
        END;
        $$;
    """)
    op.execute("""
        CREATE TRIGGER trg_generations_append_only
        BEFORE UPDATE OR DELETE ON generations
        FOR EACH ROW EXECUTE FUNCTION generations_append_only();
    """)


def downgrade() -> None:
    """Drop everything created by upgrade()."""
    op.execute("DROP TRIGGER IF EXISTS trg_generations_append_only ON generations")
    op.execute("DROP FUNCTION IF EXISTS generations_append_only()")
    op.execute("DROP FUNCTION IF EXISTS get_credit_balance(text)")
    op.execute("DROP FUNCTION IF EXISTS refund_credit(text)")
    op.execute("DROP FUNCTION IF EXISTS consume_credit(text)")
    op.drop_table('generations')
    op.drop_table('user_credits')
