"""HTTP API for the ReBAC admin backend."""
