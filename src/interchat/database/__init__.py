"""
Database package for InterChat.

- **db_connection.py**: ``ConnectionManager``, the single aiosqlite connection
  with serialised write transactions.
- **db_schema.py**: Table, index and trigger creation.
- **db_perf_mon.py**: Per-query timing statistics.
- **database.py**: ``Database`` coordinator owning the connection and the
  repositories.
"""
