"""
Duplicate Detection Service package for the records platform.

This package decides, before a lead, contact or account is created,
whether the candidate record is likely a duplicate of an existing one
under the tenant's administrator-configured matching rules. It provides:

- app.main: API surface for duplicate checks, decisions and rule admin.
- app.rules: Rule model, normalizer, evaluator, reporter and engine.
- app.persistence: In-memory and PostgreSQL rule, record and audit stores.
- app.cache: Redis cache of active rule lists.
- app.audit: Recorder for user decisions on reported duplicates.

Guidelines:
- The engine is stateless; the tenant is always an explicit argument.
- A check is advisory. When it cannot run, record creation proceeds.
- Only the highest-priority rule with matches is ever reported.
"""
