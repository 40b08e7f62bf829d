"""Database schema migrations."""

from __future__ import annotations

from .connection import OptimizedSQLitePool


SCHEMA_SQL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS schools (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS admins (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        school_id INTEGER NOT NULL,
        username TEXT UNIQUE NOT NULL,
        email TEXT,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'FULL',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(school_id) REFERENCES schools(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        school_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        event_date DATE NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(school_id) REFERENCES schools(id)
    );
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_one_active ON events(school_id) WHERE is_active;",
    """
    CREATE TABLE IF NOT EXISTS companies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        school_id INTEGER NOT NULL,
        company_name TEXT NOT NULL,
        FOREIGN KEY(school_id) REFERENCES schools(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS hosts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        company_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        FOREIGN KEY(company_id) REFERENCES companies(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS positions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id INTEGER NOT NULL,
        host_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        slots INTEGER NOT NULL DEFAULT 1,
        is_published BOOLEAN NOT NULL DEFAULT TRUE,
        contact_name TEXT,
        contact_email TEXT,
        address TEXT,
        arrival TEXT,
        start_time TEXT,
        end_time TEXT,
        FOREIGN KEY(event_id) REFERENCES events(id),
        FOREIGN KEY(host_id) REFERENCES hosts(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_positions_event ON positions(event_id, is_published);",
    """
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        school_id INTEGER NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        email TEXT,
        graduating_class_year INTEGER,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        FOREIGN KEY(school_id) REFERENCES schools(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_students_school ON students(school_id, is_active);",
    """
    CREATE TABLE IF NOT EXISTS preferences (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        position_id INTEGER NOT NULL,
        rank INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(student_id, position_id),
        FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY(position_id) REFERENCES positions(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_preferences_student ON preferences(student_id, rank);",
    """
    CREATE TABLE IF NOT EXISTS lottery_configurations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        school_id INTEGER UNIQUE NOT NULL,
        grade_order TEXT NOT NULL DEFAULT 'NONE',
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(school_id) REFERENCES schools(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS manual_assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        configuration_id INTEGER NOT NULL,
        student_id INTEGER NOT NULL,
        position_id INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(configuration_id, student_id),
        FOREIGN KEY(configuration_id) REFERENCES lottery_configurations(id) ON DELETE CASCADE,
        FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY(position_id) REFERENCES positions(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS prefill_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        configuration_id INTEGER NOT NULL,
        company_id INTEGER NOT NULL,
        position_id INTEGER NOT NULL,
        slots INTEGER NOT NULL,
        percentage INTEGER NOT NULL CHECK (percentage BETWEEN 0 AND 100),
        UNIQUE(configuration_id, company_id, position_id),
        FOREIGN KEY(configuration_id) REFERENCES lottery_configurations(id) ON DELETE CASCADE,
        FOREIGN KEY(company_id) REFERENCES companies(id) ON DELETE CASCADE,
        FOREIGN KEY(position_id) REFERENCES positions(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS lottery_jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id INTEGER NOT NULL,
        admin_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'RUNNING',
        progress INTEGER NOT NULL DEFAULT 0,
        seed INTEGER NOT NULL,
        -- Attempt seed that produced the committed results; equals seed for single-attempt runs
        chosen_seed INTEGER,
        grade_order TEXT NOT NULL DEFAULT 'NONE',
        started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        error TEXT,
        total_eligible INTEGER,
        placed_count INTEGER,
        not_placed_count INTEGER,
        no_choices_count INTEGER,
        skipped_pins TEXT,
        FOREIGN KEY(event_id) REFERENCES events(id),
        FOREIGN KEY(admin_id) REFERENCES admins(id)
    );
    """,
    # One RUNNING job per event, enforced by the database itself
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_lottery_jobs_single_running ON lottery_jobs(event_id) WHERE status = 'RUNNING';",
    "CREATE INDEX IF NOT EXISTS idx_lottery_jobs_event ON lottery_jobs(event_id, status, completed_at);",
    """
    CREATE TABLE IF NOT EXISTS lottery_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id INTEGER NOT NULL,
        student_id INTEGER NOT NULL,
        position_id INTEGER NOT NULL,
        origin TEXT NOT NULL,
        choice_rank INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        position_title TEXT,
        company_name TEXT,
        contact_name TEXT,
        contact_email TEXT,
        address TEXT,
        arrival TEXT,
        start_time TEXT,
        end_time TEXT,
        UNIQUE(job_id, student_id),
        FOREIGN KEY(job_id) REFERENCES lottery_jobs(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_lottery_results_position ON lottery_results(job_id, position_id);",
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        admin_id INTEGER,
        action_type TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id INTEGER,
        old_value TEXT,
        new_value TEXT,
        reason TEXT,
        ip_address TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_entity ON audit_log(entity_type, entity_id);",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action_type, created_at);",
)


async def run_migrations(pool: OptimizedSQLitePool) -> None:
    async with pool.transaction() as conn:
        for statement in SCHEMA_SQL:
            await conn.execute(statement)
