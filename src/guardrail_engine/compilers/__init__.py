"""Deterministic document compilers.

Modules:
- work_plan: work plan content to issue draft
"""
