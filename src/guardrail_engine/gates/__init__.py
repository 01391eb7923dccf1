"""Deny-by-default guardrail gates.

Modules:
- verdict: immutable verdict and reason types
- params: closed parameter models per gate kind
- evidence: evidence records and field predicates
- evaluator: gate functions and the ``gate`` dispatcher
"""
