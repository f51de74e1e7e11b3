"""Roles resource: relational rows plus ReBAC tuples."""
