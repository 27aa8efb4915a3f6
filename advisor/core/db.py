"""
SQLite record store - connection handling and schema.
Monetary columns hold integer minor units (paise).
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from . import config


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    Path(config.DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(config.DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


REQUIRED_TABLES = [
    'schools', 'school_members', 'auth_tokens', 'students', 'payments',
    'fee_ledger', 'attendance', 'staff', 'salaries', 'expenses',
    'conversations', 'pending_actions', 'audit_log'
]


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Tenancy and identity collaborators
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS schools (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS school_members (
                user_id TEXT NOT NULL,
                school_id TEXT NOT NULL REFERENCES schools(id),
                role TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (user_id, school_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS auth_tokens (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                expires_at TIMESTAMP
            )
        ''')

        # Operational records
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS students (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                name TEXT NOT NULL,
                class_name TEXT,
                fee_amount INTEGER NOT NULL DEFAULT 0,
                fee_type TEXT NOT NULL DEFAULT 'monthly',  -- monthly|yearly|one-time
                join_date DATE,
                is_archived INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                student_id TEXT NOT NULL REFERENCES students(id),
                amount INTEGER NOT NULL,
                paid_on DATE NOT NULL,
                method TEXT,
                created_by TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS fee_ledger (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                amount INTEGER NOT NULL,
                posted_on DATE NOT NULL,
                memo TEXT,
                payment_id TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS attendance (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                student_id TEXT NOT NULL REFERENCES students(id),
                date DATE NOT NULL,
                status TEXT NOT NULL,  -- present|absent|late|excused
                marked_by TEXT,
                UNIQUE (student_id, date)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS staff (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                name TEXT NOT NULL,
                role_title TEXT,
                salary INTEGER NOT NULL DEFAULT 0,
                salary_type TEXT NOT NULL DEFAULT 'monthly',  -- monthly|yearly
                join_date DATE,
                is_archived INTEGER NOT NULL DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS salaries (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                staff_id TEXT NOT NULL REFERENCES staff(id),
                net_amount INTEGER NOT NULL,
                paid_on DATE NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                school_id TEXT NOT NULL REFERENCES schools(id),
                category TEXT NOT NULL,
                amount INTEGER NOT NULL,
                spent_on DATE NOT NULL,
                description TEXT,
                created_by TEXT
            )
        ''')

        # Conversational memory (context only, never a fact source)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                owner_user_id TEXT NOT NULL,
                school_id TEXT,
                title TEXT NOT NULL,
                messages TEXT NOT NULL DEFAULT '[]',
                created_at TIMESTAMP NOT NULL,
                last_updated TIMESTAMP NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS pending_actions (
                id TEXT PRIMARY KEY,
                requester_user_id TEXT NOT NULL,
                school_scope_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_summary TEXT NOT NULL,
                action_data TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                expires_at TIMESTAMP NOT NULL,
                state TEXT NOT NULL,
                confirmed_by TEXT,
                executed_at TIMESTAMP,
                result_message TEXT,
                last_error TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                user_id TEXT,
                school_id TEXT,
                action TEXT NOT NULL,
                detail TEXT
            )
        ''')

        # Indexes for scoped reads
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_students_school ON students(school_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_payments_student ON payments(student_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_attendance_school_date ON attendance(school_id, date)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_conversations_owner ON conversations(owner_user_id, last_updated DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_pending_actions_requester ON pending_actions(requester_user_id, state)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
