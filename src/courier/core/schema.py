"""
Tables backing the job queue, dead letters, breakers and cost controls.

All shared mutable state lives in these tables so every worker thread and
process sees the same breaker state, rate windows and quota counters.

Architecture:
    ::

        Table Registry (CORE_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ jobs           → core_jobs            (queue, claims)      │
        │ dead_letters   → core_dead_letters    (terminal failures)  │
        │ circuit_state  → core_circuit_state   (one row/dependency) │
        │ rate_events    → core_rate_events     (sliding-window log) │
        │ quota_counters → core_quota_counters  (per UTC day)        │
        │ result_cache   → core_result_cache    (expiring results)   │
        └────────────────────────────────────────────────────────────┘

Timestamps are ISO 8601 UTC strings with fixed precision, so ``<=`` on the
text column is a chronological comparison.

Guardrails:
    ❌ DON'T: Drop the partial unique index on idempotency_key
    ✅ DO: Let the index reject a second active job for the same key
"""

CORE_TABLES = {
    "jobs": "core_jobs",
    "dead_letters": "core_dead_letters",
    "circuit_state": "core_circuit_state",
    "rate_events": "core_rate_events",
    "quota_counters": "core_quota_counters",
    "result_cache": "core_result_cache",
}


CORE_DDL = {
    # =========================================================================
    # CORE_JOBS: the queue
    #
    # claimed_by / claim_expires_at are set only while status = 'processing'.
    # failure_history is a JSON array of FailureRecord dicts.
    # =========================================================================
    "jobs": """
        CREATE TABLE IF NOT EXISTS core_jobs (
            id TEXT PRIMARY KEY,
            job_type TEXT NOT NULL,
            payload TEXT NOT NULL,              -- JSON
            status TEXT NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            next_run_at TEXT NOT NULL,
            last_error TEXT,
            idempotency_key TEXT,
            claimed_by TEXT,
            claim_expires_at TEXT,
            failure_history TEXT NOT NULL DEFAULT '[]',  -- JSON
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "jobs_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_core_jobs_status_next_run
        ON core_jobs(status, next_run_at)
    """,
    "jobs_idx_active_key": """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_core_jobs_active_idempotency
        ON core_jobs(idempotency_key)
        WHERE idempotency_key IS NOT NULL AND status IN ('pending', 'processing')
    """,
    "jobs_idx_type": """
        CREATE INDEX IF NOT EXISTS idx_core_jobs_type
        ON core_jobs(job_type)
    """,
    # =========================================================================
    # CORE_DEAD_LETTERS: one row per dead-lettered job
    # =========================================================================
    "dead_letters": """
        CREATE TABLE IF NOT EXISTS core_dead_letters (
            id TEXT PRIMARY KEY,
            original_job_id TEXT NOT NULL UNIQUE,
            job_type TEXT NOT NULL,
            job_snapshot TEXT NOT NULL,         -- JSON
            failure_history TEXT NOT NULL,      -- JSON
            moved_at TEXT NOT NULL,
            resolved INTEGER NOT NULL DEFAULT 0,
            resolved_at TEXT,
            resolved_by TEXT,
            replayed_job_id TEXT
        )
    """,
    "dead_letters_idx_unresolved": """
        CREATE INDEX IF NOT EXISTS idx_core_dead_letters_unresolved
        ON core_dead_letters(resolved, moved_at)
    """,
    "dead_letters_idx_type": """
        CREATE INDEX IF NOT EXISTS idx_core_dead_letters_type
        ON core_dead_letters(job_type)
    """,
    # =========================================================================
    # CORE_CIRCUIT_STATE: one row per dependency
    # =========================================================================
    "circuit_state": """
        CREATE TABLE IF NOT EXISTS core_circuit_state (
            dependency TEXT PRIMARY KEY,
            state TEXT NOT NULL DEFAULT 'closed',
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            opened_at TEXT,
            probe_in_flight INTEGER NOT NULL DEFAULT 0,
            probe_started_at TEXT,
            updated_at TEXT NOT NULL
        )
    """,
    # =========================================================================
    # CORE_RATE_EVENTS: sliding log, one row per admitted call
    # =========================================================================
    "rate_events": """
        CREATE TABLE IF NOT EXISTS core_rate_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rate_key TEXT NOT NULL,             -- dependency:identifier
            occurred_at TEXT NOT NULL
        )
    """,
    "rate_events_idx_key": """
        CREATE INDEX IF NOT EXISTS idx_core_rate_events_key
        ON core_rate_events(rate_key, occurred_at)
    """,
    "quota_counters": """
        CREATE TABLE IF NOT EXISTS core_quota_counters (
            dependency TEXT NOT NULL,
            day TEXT NOT NULL,                  -- YYYY-MM-DD (UTC)
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (dependency, day)
        )
    """,
    "result_cache": """
        CREATE TABLE IF NOT EXISTS core_result_cache (
            cache_key TEXT PRIMARY KEY,
            value TEXT NOT NULL,                -- JSON
            expires_at TEXT NOT NULL
        )
    """,
}


def create_core_tables(conn) -> None:
    """
    Create all courier tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
