"""HTTP Basic Auth for the admin matching API.

One shared password (ADMIN_WEB_PASSWORD). The username is the reviewer
identity written to decided_by, verified_by and the audit log, so it must
be non-blank and, when ADMIN_REVIEWERS is set, on that allowlist.
User-facing authentication belongs to the profile collaborator.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from organmatch.config import settings

security = HTTPBasic()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def reviewer_name(username: str) -> str:
    """Canonical reviewer id: trimmed and lower-cased."""
    return username.strip().lower()


async def verify_admin(
    credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
) -> str:
    """FastAPI dependency — return the acting reviewer's canonical name.

    503 when no password is configured, 401 for a wrong password or blank
    username, 403 for a username outside ADMIN_REVIEWERS.
    """
    expected = settings.security.admin_web_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_WEB_PASSWORD not configured",
        )

    if not secrets.compare_digest(credentials.password.encode("utf-8"), expected.encode("utf-8")):
        raise _unauthorized("Invalid credentials")

    reviewer = reviewer_name(credentials.username)
    if not reviewer:
        raise _unauthorized("A reviewer username is required")

    allowed = settings.security.reviewer_names
    if allowed and reviewer not in allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{reviewer} is not a reviewer")

    return reviewer
