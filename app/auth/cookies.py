"""httpOnly cookie handling for the access/refresh token pair."""

from __future__ import annotations

from typing import Literal, cast

from fastapi import Response

from app.core.config import AuthConfig, CookieConfig


def _same_site(config: CookieConfig) -> Literal["lax", "strict", "none"]:
    return cast(Literal["lax", "strict", "none"], config.same_site)


def set_auth_cookies(
    response: Response,
    *,
    access_token: str,
    refresh_token: str,
    cookies: CookieConfig,
    auth: AuthConfig,
) -> None:
    """Attach both tokens; the refresh cookie is only sent to the refresh endpoint."""
    response.set_cookie(
        cookies.access_cookie_name,
        access_token,
        max_age=auth.access_token_ttl_seconds,
        path="/",
        secure=cookies.secure,
        httponly=True,
        samesite=_same_site(cookies),
    )
    response.set_cookie(
        cookies.refresh_cookie_name,
        refresh_token,
        max_age=auth.refresh_token_ttl_seconds,
        path=cookies.refresh_cookie_path,
        secure=cookies.secure,
        httponly=True,
        samesite=_same_site(cookies),
    )


def clear_auth_cookies(response: Response, *, cookies: CookieConfig) -> None:
    """Expire both cookies immediately."""
    for name, path in (
        (cookies.access_cookie_name, "/"),
        (cookies.refresh_cookie_name, cookies.refresh_cookie_path),
    ):
        response.set_cookie(
            name,
            "",
            max_age=0,
            path=path,
            secure=cookies.secure,
            httponly=True,
            samesite=_same_site(cookies),
        )
