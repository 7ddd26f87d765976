from __future__ import annotations

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS sources (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url TEXT NOT NULL UNIQUE,
  title TEXT NOT NULL,
  type TEXT NOT NULL DEFAULT 'rss',
  extraction_rules TEXT,
  extraction_instructions TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  last_checked TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_sources_active ON sources(is_active);

CREATE TABLE IF NOT EXISTS posts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  source_id INTEGER NOT NULL,
  date TEXT,
  url TEXT NOT NULL,
  title TEXT NOT NULL,
  content TEXT,
  full_content TEXT,
  summary TEXT,
  notified INTEGER NOT NULL DEFAULT 0,
  flagged INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  UNIQUE(url, title),
  FOREIGN KEY(source_id) REFERENCES sources(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS ix_posts_source_id ON posts(source_id);
CREATE INDEX IF NOT EXISTS ix_posts_created_at ON posts(created_at);

CREATE TABLE IF NOT EXISTS config (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""
