"""Authentication API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from app.api.contracts import (
    ApiErrorResponse,
    AuthSessionResponse,
    AuthUserData,
    MessageResponse,
    RegisterData,
    RegisterResponse,
    RevokedSessionData,
    RevokeSessionResponse,
    SessionsData,
    SessionsResponse,
    UserResponse,
)
from app.api.errors import ApiError, BadRequestError, UnauthorizedError
from app.auth.cookies import clear_auth_cookies, set_auth_cookies
from app.auth.gate import RequestGate
from app.auth.models import (
    AccessClaims,
    AuthResult,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionView,
    VerifyEmailRequest,
)
from app.auth.rate_limiter import AttemptRateLimiter
from app.auth.service import AuthService
from app.core.config import AppConfig

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, we have sent a password reset link."
)

_ERRORS = {
    400: {"model": ApiErrorResponse},
    401: {"model": ApiErrorResponse},
}


def client_ip(request: Request, *, trust_proxy: bool = False) -> str:
    """Client address. Proxy headers are read only when ``trust_proxy`` is set."""
    if not trust_proxy:
        return (request.client.host if request.client else "") or "unknown"
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return (request.client.host if request.client else "") or "unknown"


def create_auth_router(
    *,
    service: AuthService,
    gate: RequestGate,
    login_limiter: AttemptRateLimiter,
    email_limiter: AttemptRateLimiter,
    config: AppConfig,
) -> APIRouter:
    """Build the /api/auth router."""
    router = APIRouter(tags=["auth"])
    refresh_cookie = config.cookies.refresh_cookie_name

    def _ip(request: Request) -> str:
        return client_ip(request, trust_proxy=config.security.trust_proxy_headers)

    def _session_data(result: AuthResult, response: Response) -> AuthUserData:
        set_auth_cookies(
            response,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            cookies=config.cookies,
            auth=config.auth,
        )
        return AuthUserData(user=result.user, expires_in=result.expires_in)

    @router.post(
        "/api/auth/register",
        status_code=201,
        response_model=RegisterResponse,
        responses={**_ERRORS, 409: {"model": ApiErrorResponse}},
    )
    def register(req: RegisterRequest, request: Request, response: Response) -> RegisterResponse:
        """Create an account, start a session and send the verification email."""
        result = service.register(
            req.email,
            req.password,
            user_agent=request.headers.get("user-agent", ""),
            ip_address=_ip(request),
        )
        data = _session_data(result, response)
        return RegisterResponse(
            message="Registration successful. Please check your email to verify your account.",
            data=RegisterData(user=data.user, expires_in=data.expires_in),
        )

    @router.post(
        "/api/auth/login",
        response_model=AuthSessionResponse,
        responses={**_ERRORS, 429: {"model": ApiErrorResponse}},
    )
    def login(req: LoginRequest, request: Request, response: Response) -> AuthSessionResponse:
        ip = _ip(request)
        login_limiter.assert_allowed(principal=req.email, client_ip=ip)
        try:
            result = service.login(
                req.email,
                req.password,
                user_agent=request.headers.get("user-agent", ""),
                ip_address=ip,
            )
        except ApiError:
            login_limiter.record_failure(principal=req.email, client_ip=ip)
            raise
        login_limiter.record_success(principal=req.email, client_ip=ip)
        return AuthSessionResponse(message="Login successful", data=_session_data(result, response))

    @router.post(
        "/api/auth/refresh",
        response_model=AuthSessionResponse,
        responses={401: {"model": ApiErrorResponse}},
    )
    def refresh(request: Request, response: Response) -> AuthSessionResponse:
        """Rotate the refresh cookie and issue a new access cookie."""
        token = request.cookies.get(refresh_cookie, "")
        if not token:
            raise UnauthorizedError("No refresh token provided")
        result = service.refresh_access_token(
            token,
            user_agent=request.headers.get("user-agent", ""),
            ip_address=_ip(request),
        )
        return AuthSessionResponse(
            message="Token refreshed successfully", data=_session_data(result, response)
        )

    def _logout(request: Request, response: Response) -> MessageResponse:
        service.signout(request.cookies.get(refresh_cookie))
        clear_auth_cookies(response, cookies=config.cookies)
        return MessageResponse(message="Logout successful")

    # The refresh cookie is scoped to the refresh path, so browsers only send it here.
    router.add_api_route(
        "/api/auth/refresh/logout",
        _logout,
        methods=["POST"],
        response_model=MessageResponse,
        name="logout_with_refresh_cookie",
    )
    router.add_api_route(
        "/api/auth/logout", _logout, methods=["POST"], response_model=MessageResponse
    )

    @router.post(
        "/api/auth/logout-all",
        response_model=MessageResponse,
        responses={401: {"model": ApiErrorResponse}},
    )
    def logout_all(response: Response, identity: AccessClaims = Depends(gate)) -> MessageResponse:
        service.signout_all_devices(identity.user_id)
        clear_auth_cookies(response, cookies=config.cookies)
        return MessageResponse(message="Signed out from all devices")

    @router.get(
        "/api/auth/me",
        response_model=UserResponse,
        responses={401: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
    )
    def me(identity: AccessClaims = Depends(gate)) -> UserResponse:
        """Return the current user's profile from the store."""
        return UserResponse(
            message="Profile retrieved successfully",
            data=service.get_current_user(identity.user_id),
        )

    @router.get(
        "/api/auth/sessions",
        response_model=SessionsResponse,
        responses={401: {"model": ApiErrorResponse}},
    )
    def list_sessions(request: Request, identity: AccessClaims = Depends(gate)) -> SessionsResponse:
        current_refresh = request.cookies.get(refresh_cookie, "")
        sessions = [
            SessionView(
                id=session.id,
                user_agent=session.user_agent,
                ip_address=session.ip_address,
                created_at=session.created_at,
                last_used_at=session.last_used_at,
                expires_at=session.expires_at,
                is_current=bool(current_refresh) and session.refresh_token == current_refresh,
            )
            for session in service.get_sessions(identity.user_id)
        ]
        return SessionsResponse(
            message="Sessions retrieved successfully", data=SessionsData(sessions=sessions)
        )

    @router.delete(
        "/api/auth/sessions/{session_id}",
        response_model=RevokeSessionResponse,
        responses={401: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
    )
    def revoke_session(
        session_id: str, identity: AccessClaims = Depends(gate)
    ) -> RevokeSessionResponse:
        """Sign out one device of the caller."""
        service.revoke_session(session_id, identity.user_id)
        return RevokeSessionResponse(
            message="Session revoked successfully",
            data=RevokedSessionData(session_id=session_id),
        )

    @router.post(
        "/api/auth/forgot-password",
        response_model=MessageResponse,
        responses={400: {"model": ApiErrorResponse}, 429: {"model": ApiErrorResponse}},
    )
    def forgot_password(req: ForgotPasswordRequest, request: Request) -> MessageResponse:
        email_limiter.hit(principal=f"forgot:{req.email}", client_ip=_ip(request))
        service.request_password_reset(req.email)
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    @router.post(
        "/api/auth/reset-password",
        response_model=MessageResponse,
        responses={400: {"model": ApiErrorResponse}},
    )
    def reset_password(req: ResetPasswordRequest) -> MessageResponse:
        service.reset_password(req.token, req.password)
        return MessageResponse(
            message="Password has been reset successfully. "
            "You can now sign in with your new password."
        )

    @router.post(
        "/api/auth/verify-email",
        response_model=UserResponse,
        responses={400: {"model": ApiErrorResponse}},
    )
    def verify_email(req: VerifyEmailRequest) -> UserResponse:
        return UserResponse(message="Email verified successfully", data=service.verify_email(req.token))

    @router.post(
        "/api/auth/resend-verification",
        response_model=MessageResponse,
        responses={**_ERRORS, 429: {"model": ApiErrorResponse}},
    )
    def resend_verification(
        request: Request, identity: AccessClaims = Depends(gate)
    ) -> MessageResponse:
        email_limiter.hit(principal=f"resend:{identity.user_id}", client_ip=_ip(request))
        service.resend_verification_email(identity.user_id)
        return MessageResponse(message="Verification email sent. Please check your inbox.")

    @router.post(
        "/api/auth/change-password",
        response_model=MessageResponse,
        responses=_ERRORS,
    )
    def change_password(
        req: ChangePasswordRequest,
        response: Response,
        identity: AccessClaims = Depends(gate),
    ) -> MessageResponse:
        """Change password; every session is revoked so the user signs in again."""
        if req.new_password != req.confirm_password:
            raise BadRequestError("New passwords do not match")
        service.change_password(identity.user_id, req.current_password, req.new_password)
        clear_auth_cookies(response, cookies=config.cookies)
        return MessageResponse(message="Password changed successfully. Please sign in again.")

    return router
