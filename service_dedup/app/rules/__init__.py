"""
Duplicate rules package.

Defines the rule model and the evaluation pipeline used by the
Duplicate Detection Service. Rules are evaluated in descending priority
and evaluation stops at the first rule that finds any match.

Modules of interest:
- models: Data classes for rules, matches, results and audit entries.
- normalizer: Value canonicalization and dot-path field access.
- entities: Entity collections and their matchable fields.
- repository: Active-rule lookup and rule administration.
- evaluator: ANY/ALL field-group evaluation against the record store.
- reporter: Overlapping fields and display context for a match.
- engine: Priority-ordered, short-circuiting orchestration.
- seeder: Default rules for new tenants.
"""
