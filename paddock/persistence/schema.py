"""
SQLite schema for the fan community.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def users_schema() -> str:
    """Account + profile in one row. favorite_track_ids is a JSON array."""
    return """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        password_hash TEXT,
        username TEXT,
        display_name TEXT,
        bio TEXT,
        date_of_birth TEXT,
        show_age_on_profile INTEGER NOT NULL DEFAULT 0,
        profile_image_url TEXT,
        favorite_driver_id TEXT,
        favorite_team_id TEXT,
        favorite_track_ids TEXT NOT NULL DEFAULT '[]',
        role TEXT NOT NULL DEFAULT 'user',
        points INTEGER NOT NULL DEFAULT 0,
        strikes INTEGER NOT NULL DEFAULT 0,
        banned_until TEXT,
        onboarded_at TEXT,
        created_at TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_users_email ON users(email);
    CREATE UNIQUE INDEX IF NOT EXISTS ix_users_username ON users(username) WHERE username IS NOT NULL;
    """


def follows_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS follows (
        follower_id TEXT NOT NULL,
        followee_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (follower_id, followee_id),
        FOREIGN KEY (follower_id) REFERENCES users(id),
        FOREIGN KEY (followee_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_follows_followee ON follows(followee_id);
    """


def catalog_schema() -> str:
    """Drivers, teams and tracks. Loaded from the catalog JSON, edited by admins."""
    return """
    CREATE TABLE IF NOT EXISTS teams (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        color TEXT
    );
    CREATE TABLE IF NOT EXISTS drivers (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        country TEXT,
        number INTEGER,
        team_id TEXT,
        headshot_url TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        FOREIGN KEY (team_id) REFERENCES teams(id)
    );
    CREATE TABLE IF NOT EXISTS tracks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        location TEXT,
        country TEXT,
        start_date TEXT,
        end_date TEXT,
        chat_enabled INTEGER NOT NULL DEFAULT 1
    );
    CREATE INDEX IF NOT EXISTS ix_tracks_start ON tracks(start_date);
    """


def chat_schema() -> str:
    """Message ids autoincrement so clients can order and resume by id."""
    return """
    CREATE TABLE IF NOT EXISTS chat_rooms (
        track_id TEXT PRIMARY KEY,
        mode TEXT NOT NULL DEFAULT 'open',
        slow_mode_ms INTEGER,
        opens_at TEXT,
        closes_at TEXT,
        FOREIGN KEY (track_id) REFERENCES tracks(id)
    );
    CREATE TABLE IF NOT EXISTS live_chat_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        track_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        message TEXT NOT NULL,
        display_name TEXT NOT NULL,
        client_nonce TEXT,
        created_at TEXT NOT NULL,
        deleted_at TEXT,
        deleted_by TEXT,
        FOREIGN KEY (track_id) REFERENCES tracks(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_chat_track_id ON live_chat_messages(track_id, id);
    CREATE UNIQUE INDEX IF NOT EXISTS ix_chat_nonce
        ON live_chat_messages(track_id, user_id, client_nonce) WHERE client_nonce IS NOT NULL;
    """


def polls_schema() -> str:
    """status: draft | live | closed. One vote per user per poll."""
    return """
    CREATE TABLE IF NOT EXISTS polls (
        id TEXT PRIMARY KEY,
        question TEXT NOT NULL,
        author_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'live',
        expires_at TEXT,
        closed_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (author_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_polls_status ON polls(status);
    CREATE TABLE IF NOT EXISTS poll_options (
        id TEXT PRIMARY KEY,
        poll_id TEXT NOT NULL,
        label TEXT NOT NULL,
        position INTEGER NOT NULL,
        FOREIGN KEY (poll_id) REFERENCES polls(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_poll_options_poll ON poll_options(poll_id);
    CREATE TABLE IF NOT EXISTS votes (
        id TEXT PRIMARY KEY,
        poll_id TEXT NOT NULL,
        option_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (poll_id) REFERENCES polls(id) ON DELETE CASCADE,
        FOREIGN KEY (option_id) REFERENCES poll_options(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_votes_poll_user ON votes(poll_id, user_id);
    """


def grids_schema() -> str:
    """One grid per user per type. ranked_items / previous_state are JSON arrays."""
    return """
    CREATE TABLE IF NOT EXISTS grids (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        ranked_items TEXT NOT NULL,
        blurb TEXT,
        previous_state TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_grids_user_type ON grids(user_id, type);
    CREATE TABLE IF NOT EXISTS grid_likes (
        grid_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (grid_id, user_id),
        FOREIGN KEY (grid_id) REFERENCES grids(id) ON DELETE CASCADE
    );
    """


def content_schema() -> str:
    """Profile posts and entity comments. parent_id set on replies."""
    return """
    CREATE TABLE IF NOT EXISTS posts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        parent_page_type TEXT,
        parent_page_id TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_posts_user ON posts(user_id);
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        author_id TEXT NOT NULL,
        parent_id TEXT,
        content TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'approved',
        created_at TEXT NOT NULL,
        FOREIGN KEY (author_id) REFERENCES users(id),
        FOREIGN KEY (parent_id) REFERENCES comments(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS ix_comments_entity ON comments(entity_type, entity_id);
    CREATE INDEX IF NOT EXISTS ix_comments_parent ON comments(parent_id);
    CREATE INDEX IF NOT EXISTS ix_comments_created ON comments(created_at);
    CREATE TABLE IF NOT EXISTS comment_likes (
        comment_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (comment_id, user_id),
        FOREIGN KEY (comment_id) REFERENCES comments(id) ON DELETE CASCADE
    );
    """


def moderation_schema() -> str:
    """Reports are unique per reporter and target."""
    return """
    CREATE TABLE IF NOT EXISTS reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        reporter_id TEXT NOT NULL,
        target_type TEXT NOT NULL,
        target_id TEXT NOT NULL,
        reason TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        created_at TEXT NOT NULL,
        FOREIGN KEY (reporter_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_reports_unique ON reports(reporter_id, target_type, target_id);
    CREATE INDEX IF NOT EXISTS ix_reports_status ON reports(status);
    CREATE TABLE IF NOT EXISTS track_tips (
        id TEXT PRIMARY KEY,
        track_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        tip_type TEXT NOT NULL,
        content TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        FOREIGN KEY (track_id) REFERENCES tracks(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_track_tips_track ON track_tips(track_id, status);
    """


def notifications_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        actor_id TEXT,
        payload TEXT NOT NULL DEFAULT '{}',
        read_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_notifications_user ON notifications(user_id, created_at);
    CREATE TABLE IF NOT EXISTS notification_preferences (
        user_id TEXT PRIMARY KEY,
        email_likes INTEGER NOT NULL DEFAULT 1,
        email_comments INTEGER NOT NULL DEFAULT 1,
        email_follows INTEGER NOT NULL DEFAULT 1,
        email_mentions INTEGER NOT NULL DEFAULT 1,
        email_poll_votes INTEGER NOT NULL DEFAULT 1,
        push_enabled INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE TABLE IF NOT EXISTS email_queue (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        to_email TEXT NOT NULL,
        template TEXT NOT NULL,
        payload TEXT NOT NULL DEFAULT '{}',
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_email_queue_status ON email_queue(status);
    """


def engagement_schema() -> str:
    """Fan points ledger, race check-ins and the coming-soon waitlist."""
    return """
    CREATE TABLE IF NOT EXISTS point_events (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        activity_type TEXT NOT NULL,
        points INTEGER NOT NULL,
        reference_id TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS ix_point_events_user ON point_events(user_id);
    CREATE TABLE IF NOT EXISTS check_ins (
        user_id TEXT NOT NULL,
        track_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (user_id, track_id)
    );
    CREATE TABLE IF NOT EXISTS waitlist_signups (
        email TEXT PRIMARY KEY,
        created_at TEXT NOT NULL
    );
    """


def all_schema_sql() -> str:
    """All DDL in dependency order."""
    return "\n".join([
        users_schema(),
        follows_schema(),
        catalog_schema(),
        chat_schema(),
        polls_schema(),
        grids_schema(),
        content_schema(),
        moderation_schema(),
        notifications_schema(),
        engagement_schema(),
    ])
