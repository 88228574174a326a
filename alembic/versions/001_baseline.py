"""Baseline: users, ledger, steps, cashouts, tournaments and referrals.

Revision ID: 001_baseline
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(128) PRIMARY KEY,
            email VARCHAR(320) NOT NULL DEFAULT '',
            display_name VARCHAR(128) NOT NULL DEFAULT '',
            photo_url TEXT NOT NULL DEFAULT '',
            is_premium BOOLEAN NOT NULL DEFAULT FALSE,
            premium_expiry TIMESTAMPTZ,
            total_earnings NUMERIC(12,2) NOT NULL DEFAULT 0,
            pending_cashout NUMERIC(12,2) NOT NULL DEFAULT 0,
            available_balance NUMERIC(12,2) NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            last_streak_date DATE,
            lifetime_steps INTEGER NOT NULL DEFAULT 0,
            referral_code VARCHAR(8) UNIQUE NOT NULL,
            referred_by VARCHAR(128),
            has_completed_onboarding BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_active TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_users_available_balance_non_negative CHECK (available_balance >= 0)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS admins (
            user_id VARCHAR(128) PRIMARY KEY,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            amount NUMERIC(12,2) NOT NULL,
            type VARCHAR(32) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            tournament_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_user_created
        ON transactions(user_id, created_at)
    """)

    # --- Steps ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS steps (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            step_count INTEGER NOT NULL DEFAULT 0,
            earnings NUMERIC(12,2) NOT NULL DEFAULT 0,
            multiplier NUMERIC(4,2) NOT NULL DEFAULT 1.00,
            is_validated BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_steps_user_date UNIQUE (user_id, date)
        )
    """)

    # --- Cashouts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS cashouts (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            amount NUMERIC(12,2) NOT NULL,
            paypal_email VARCHAR(320) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            rejection_reason TEXT,
            processed_at TIMESTAMPTZ,
            processed_by VARCHAR(128),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_cashouts_user
        ON cashouts(user_id)
    """)

    # --- Tournaments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tournaments (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            prize_pool NUMERIC(12,2) NOT NULL,
            prizes JSON NOT NULL DEFAULT '{}',
            participants_count INTEGER NOT NULL DEFAULT 0,
            top_participants JSON NOT NULL DEFAULT '[]',
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            is_premium_only BOOLEAN NOT NULL DEFAULT FALSE,
            winners JSON,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_tournaments_active_end
        ON tournaments(is_active, end_date)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tournament_participants (
            id BIGSERIAL PRIMARY KEY,
            tournament_id BIGINT NOT NULL REFERENCES tournaments(id) ON DELETE CASCADE,
            user_id VARCHAR(128) NOT NULL,
            display_name VARCHAR(128) NOT NULL DEFAULT '',
            photo_url TEXT NOT NULL DEFAULT '',
            step_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_participants_tournament_user UNIQUE (tournament_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_participants_tournament_steps
        ON tournament_participants(tournament_id, step_count)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS prize_distributions (
            tournament_id BIGINT PRIMARY KEY REFERENCES tournaments(id) ON DELETE CASCADE,
            winners_count INTEGER NOT NULL DEFAULT 0,
            total_awarded NUMERIC(12,2) NOT NULL DEFAULT 0,
            distributed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referrals (
            id BIGSERIAL PRIMARY KEY,
            referrer_id VARCHAR(128) NOT NULL,
            referee_id VARCHAR(128) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            CONSTRAINT uq_referrals_referee UNIQUE (referee_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_referrals_referrer
        ON referrals(referrer_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS referrals")
    op.execute("DROP TABLE IF EXISTS prize_distributions")
    op.execute("DROP TABLE IF EXISTS tournament_participants")
    op.execute("DROP TABLE IF EXISTS tournaments")
    op.execute("DROP TABLE IF EXISTS cashouts")
    op.execute("DROP TABLE IF EXISTS steps")
    op.execute("DROP TABLE IF EXISTS transactions")
    op.execute("DROP TABLE IF EXISTS admins")
    op.execute("DROP TABLE IF EXISTS users")
