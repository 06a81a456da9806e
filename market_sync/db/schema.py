SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_state (
    service_name TEXT NOT NULL,
    subgraph_name TEXT NOT NULL,
    status TEXT,
    error_message TEXT,
    total_processed INTEGER NOT NULL DEFAULT 0,
    cursor_timestamp INTEGER,
    cursor_id TEXT,
    updated_at REAL NOT NULL,
    PRIMARY KEY (service_name, subgraph_name)
);

CREATE TABLE IF NOT EXISTS conditions (
    id TEXT PRIMARY KEY,
    oracle TEXT NOT NULL,
    question_id TEXT NOT NULL,
    resolved INTEGER NOT NULL DEFAULT 0,
    metadata_hash TEXT NOT NULL,
    creator TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    resolution_status TEXT,
    resolution_flagged INTEGER NOT NULL DEFAULT 0,
    resolution_paused INTEGER NOT NULL DEFAULT 0,
    resolution_last_update TEXT,
    resolution_price REAL,
    resolution_was_disputed INTEGER NOT NULL DEFAULT 0,
    resolution_approved INTEGER,
    resolution_deadline_at TEXT,
    resolution_liveness_seconds INTEGER,
    uma_request_tx_hash TEXT,
    uma_request_log_index INTEGER,
    uma_oracle_address TEXT,
    mirror_uma_request_tx_hash TEXT,
    mirror_uma_request_log_index INTEGER,
    mirror_uma_oracle_address TEXT
);

CREATE INDEX IF NOT EXISTS idx_conditions_question_id ON conditions (lower(question_id));

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    creator TEXT,
    icon_url TEXT,
    show_market_icons INTEGER NOT NULL DEFAULT 1,
    enable_neg_risk INTEGER NOT NULL DEFAULT 0,
    neg_risk_augmented INTEGER NOT NULL DEFAULT 0,
    neg_risk INTEGER NOT NULL DEFAULT 0,
    neg_risk_market_id TEXT,
    series_slug TEXT,
    rules TEXT,
    end_date TEXT,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS markets (
    condition_id TEXT PRIMARY KEY REFERENCES conditions (id),
    event_id INTEGER NOT NULL REFERENCES events (id),
    is_resolved INTEGER,
    is_active INTEGER,
    title TEXT NOT NULL,
    slug TEXT NOT NULL,
    short_title TEXT,
    icon_url TEXT,
    metadata_json TEXT,
    question TEXT,
    market_rules TEXT,
    resolution_source TEXT,
    resolution_source_url TEXT,
    resolver TEXT,
    neg_risk INTEGER NOT NULL DEFAULT 0,
    neg_risk_other INTEGER NOT NULL DEFAULT 0,
    neg_risk_market_id TEXT,
    neg_risk_request_id TEXT,
    metadata_version TEXT,
    metadata_schema TEXT,
    end_time TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_markets_event_id ON markets (event_id);
CREATE INDEX IF NOT EXISTS idx_markets_neg_risk_request_id ON markets (lower(neg_risk_request_id));

CREATE TABLE IF NOT EXISTS outcomes (
    condition_id TEXT NOT NULL REFERENCES markets (condition_id),
    outcome_index INTEGER NOT NULL,
    outcome_text TEXT,
    token_id TEXT NOT NULL,
    is_winning_outcome INTEGER NOT NULL DEFAULT 0,
    payout_value REAL,
    PRIMARY KEY (condition_id, outcome_index)
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS event_tags (
    event_id INTEGER NOT NULL REFERENCES events (id),
    tag_id INTEGER NOT NULL REFERENCES tags (id),
    PRIMARY KEY (event_id, tag_id)
);

CREATE TABLE IF NOT EXISTS settings (
    settings_group TEXT NOT NULL,
    settings_key TEXT NOT NULL,
    value TEXT,
    PRIMARY KEY (settings_group, settings_key)
);
"""

# Applied in order; PRAGMA user_version records how many have run.
MIGRATIONS: list[str] = [
    SCHEMA_SQL,
]

SCHEMA_VERSION = len(MIGRATIONS)
