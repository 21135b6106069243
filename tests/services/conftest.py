import sqlite3

import pytest

from wpprovisioner.errors import DatabaseQueryError


class SqliteClient:
    """Stands in for MySQLClient, running statements on an in-memory sqlite database."""

    def __init__(self, connection, database="wp_mysite"):
        self.connection = connection
        self.database = database
        self.statements = []

    def execute(self, statement):
        self.statements.append(statement)
        sql = statement
        if statement.strip().upper() == "SHOW TABLES":
            sql = "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        try:
            cursor = self.connection.execute(sql)
            rows = cursor.fetchall()
            self.connection.commit()
        except sqlite3.Error as exc:
            stderr = str(exc)
            if stderr.startswith("no such column"):
                column = stderr.split(":", 1)[-1].strip()
                stderr = f"ERROR 1054 (42S22) at line 1: Unknown column '{column}' in 'field list'"
            raise DatabaseQueryError(stderr, statement=statement, stderr=stderr) from exc
        return [tuple("" if value is None else str(value) for value in row) for row in rows]

    def scalar(self, statement):
        rows = self.execute(statement)
        if not rows or not rows[0]:
            return None
        return rows[0][0]


@pytest.fixture
def wordpress_db():
    connection = sqlite3.connect(":memory:")
    connection.executescript(
        """
        CREATE TABLE wp_options (
            option_id INTEGER PRIMARY KEY AUTOINCREMENT,
            option_name TEXT,
            option_value TEXT
        );
        CREATE TABLE wp_posts (
            ID INTEGER PRIMARY KEY AUTOINCREMENT,
            post_title TEXT,
            post_content TEXT
        );
        CREATE TABLE wp_users (
            ID INTEGER PRIMARY KEY AUTOINCREMENT,
            user_login TEXT,
            user_pass TEXT,
            user_nicename TEXT,
            user_email TEXT,
            user_url TEXT,
            user_registered TEXT,
            user_activation_key TEXT,
            user_status INTEGER,
            display_name TEXT
        );
        CREATE TABLE wp_usermeta (
            umeta_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            meta_key TEXT,
            meta_value TEXT
        );
        INSERT INTO wp_options (option_name, option_value) VALUES
            ('siteurl', 'http://example.com'),
            ('home', 'http://example.com'),
            ('blogname', 'Example');
        INSERT INTO wp_posts (post_title, post_content) VALUES
            ('Hello', 'Visit http://example.com/about for more.');
        """
    )
    yield SqliteClient(connection)
    connection.close()
