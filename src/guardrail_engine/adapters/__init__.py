"""Adapters: persistence for the guardrail engine.

Contains:
- database.py      Engine, session factory and the request-scoped session dependency
- repositories.py  SQLAlchemy repositories for lawbooks and remediation runs
"""

__all__: list[str] = []
