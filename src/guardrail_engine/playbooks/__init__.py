"""Remediation playbooks.

Modules:
- definitions: playbook and step definitions and the built-in catalog
- planner: pure run planning gated by the lawbook
"""
