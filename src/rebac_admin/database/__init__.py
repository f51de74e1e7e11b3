"""Database connection and schema management."""
