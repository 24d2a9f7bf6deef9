"""
Atelier backend package.

A FastAPI service fronting a hosted identity provider, Postgres tables and
S3-compatible object storage for the catalog admin panel.
"""
