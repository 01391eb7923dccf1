"""Strict document schemas for the guardrail engine.

Modules:
- common: strict base model, issue translation, result type
- lawbook: lawbook policy document and its set-valued fields
- issue_draft: issue draft document
- change_request: change request document and typed evidence union
- change_request_policy: coded semantic checks for change requests
- work_plan: work plan content and secret detection
- registry: validate and normalize by schema ID
"""
