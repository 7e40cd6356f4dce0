"""db/ -- Shared engine factory, table definitions and schema migrations.

Layer rule: db/ imports only stdlib + SQLAlchemy. auth/ and posts/ stores
import their tables from db.schema; nothing in db/ imports back.
"""
