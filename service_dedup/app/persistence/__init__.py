"""
Persistence backends.

Record stores expose ``list_all`` and ``query_equal``; rule stores expose
``list_active_rules_by_priority`` plus rule CRUD; audit sinks expose
``append``. ``memory`` holds process-local versions of all three and
``postgres`` implements them on one asyncpg pool.
"""
