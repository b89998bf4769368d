"""
services package: persistence and audit for the access gateway.

- access_store: SQLite record store for units, devices, credentials and access logs.
- audit: Best-effort AuditSink writing AccessLogEntry records.
"""
