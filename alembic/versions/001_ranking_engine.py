"""Ranking engine: duels, group competitions, matchmaking, leaderboard snapshots.

Also creates the profile, workout, group, membership and friendship tables
the engine reads (IF NOT EXISTS, since the wider application may own them).

Revision ID: 001_ranking_engine
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_ranking_engine"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Read-only collaborator tables ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id UUID PRIMARY KEY,
            username VARCHAR(64),
            display_name VARCHAR(128),
            avatar_url TEXT,
            current_streak INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS workouts (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            workout_type VARCHAR(32) NOT NULL DEFAULT 'other',
            workout_date DATE NOT NULL,
            duration_minutes INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_workouts_user_date
        ON workouts(user_id, workout_date)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS groups (
            id UUID PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            created_by UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS group_members (
            id UUID PRIMARY KEY,
            group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL DEFAULT 'member'
                CHECK (role IN ('owner', 'admin', 'member')),
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT group_members_group_user_key UNIQUE (group_id, user_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members(user_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS friendships (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            friend_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT friendships_user_friend_key UNIQUE (user_id, friend_id)
        )
    """)

    # --- Duels ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS duels (
            id UUID PRIMARY KEY,
            challenger_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            opponent_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            challenge_type VARCHAR(16) NOT NULL
                CHECK (challenge_type IN ('workout_count', 'streak')),
            duration_days INTEGER NOT NULL DEFAULT 7
                CHECK (duration_days IN (3, 7, 14, 30)),
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'active', 'completed', 'declined', 'cancelled')),
            started_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            challenger_score INTEGER NOT NULL DEFAULT 0,
            opponent_score INTEGER NOT NULL DEFAULT 0,
            winner_id UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT duels_distinct_users CHECK (challenger_id <> opponent_id),
            CONSTRAINT duels_scores_non_negative
                CHECK (challenger_score >= 0 AND opponent_score >= 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_duels_challenger ON duels(challenger_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_duels_opponent ON duels(opponent_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_duels_active_ends
        ON duels(ends_at) WHERE status = 'active'
    """)
    # At most one open duel per unordered pair of users
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_duels_open_pair
        ON duels (LEAST(challenger_id, opponent_id), GREATEST(challenger_id, opponent_id))
        WHERE status IN ('pending', 'active')
    """)

    # --- Group competitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS group_competitions (
            id UUID PRIMARY KEY,
            group1_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
            group2_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
            competition_type VARCHAR(16) NOT NULL
                CHECK (competition_type IN ('matchmaking', 'challenge')),
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'active', 'completed', 'declined', 'cancelled')),
            duration_days INTEGER NOT NULL DEFAULT 7 CHECK (duration_days > 0),
            started_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            group1_score INTEGER NOT NULL DEFAULT 0,
            group2_score INTEGER NOT NULL DEFAULT 0,
            winner_group_id UUID,
            created_by UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT group_competitions_distinct_groups CHECK (group1_id <> group2_id),
            CONSTRAINT group_competitions_scores_non_negative
                CHECK (group1_score >= 0 AND group2_score >= 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_group_competitions_group1 ON group_competitions(group1_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_group_competitions_group2 ON group_competitions(group2_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_group_competitions_active_ends
        ON group_competitions(ends_at) WHERE status = 'active'
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_group_competitions_open_pair
        ON group_competitions (LEAST(group1_id, group2_id), GREATEST(group1_id, group2_id))
        WHERE status IN ('pending', 'active')
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_contributions (
            id UUID PRIMARY KEY,
            competition_id UUID NOT NULL REFERENCES group_competitions(id) ON DELETE CASCADE,
            group_id UUID NOT NULL,
            user_id UUID NOT NULL,
            points INTEGER NOT NULL DEFAULT 0,
            workouts_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT competition_contributions_member_key UNIQUE (competition_id, group_id, user_id),
            CONSTRAINT competition_contributions_points_non_negative CHECK (points >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competition_contributions_competition
        ON competition_contributions(competition_id)
    """)

    # --- Matchmaking queue ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS matchmaking_queue (
            id UUID PRIMARY KEY,
            group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
            queued_by UUID,
            queued_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT matchmaking_queue_group_key UNIQUE (group_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_matchmaking_queue_order
        ON matchmaking_queue(queued_at, group_id)
    """)

    # --- Leaderboard snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            scope VARCHAR(64) NOT NULL,
            period_key VARCHAR(16) NOT NULL,
            rank INTEGER NOT NULL CHECK (rank >= 1),
            points INTEGER NOT NULL CHECK (points >= 0),
            taken_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leaderboard_snapshots_user_scope_period_key UNIQUE (user_id, scope, period_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_leaderboard_snapshots_user_scope
        ON leaderboard_snapshots(user_id, scope, period_key DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS matchmaking_queue CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_contributions CASCADE")
    op.execute("DROP TABLE IF EXISTS group_competitions CASCADE")
    op.execute("DROP TABLE IF EXISTS duels CASCADE")
