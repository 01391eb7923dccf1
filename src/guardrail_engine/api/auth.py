"""Request authentication for the guardrail engine API.

The edge proxy verifies the caller and forwards its subject in the
``x-afu9-sub`` header. A request without it is unauthenticated. Lawbook
writes additionally require the subject to be on the admin allow-list.
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from guardrail_engine.errors import AuthenticationError, AuthorizationError
from guardrail_engine.settings import Settings

SUBJECT_HEADER = "x-afu9-sub"


def get_app_settings(request: Request) -> Settings:
    """Return the settings the serving application was created with."""
    return request.app.state.settings


def get_current_subject(
    x_afu9_sub: Annotated[str | None, Header(alias=SUBJECT_HEADER)] = None,
) -> str:
    """Return the authenticated subject.

    Raises:
        AuthenticationError: If the header is missing or blank.
    """
    subject = (x_afu9_sub or "").strip()
    if not subject:
        raise AuthenticationError("Authentication required")
    return subject


def require_admin(
    subject: Annotated[str, Depends(get_current_subject)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> str:
    """Return the subject if it may write lawbooks.

    Raises:
        AuthorizationError: If the subject is not in ``admin_subs``.
    """
    if subject not in settings.admin_subs:
        raise AuthorizationError("Admin privileges required")
    return subject
