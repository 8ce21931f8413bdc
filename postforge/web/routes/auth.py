"""Authentication routes: registration, login, sessions, email verification and password reset."""

from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from postforge.auth.schemas import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SendOtpRequest,
    SendOtpResponse,
    UserInfo,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from postforge.services import AuthService

from ..dependencies import (
    ClientContext,
    get_auth_service,
    get_client_context,
    rate_limit,
    require_auth,
)
from ..schemas.common import AUTH_ERROR_RESPONSES, COMMON_ERROR_RESPONSES, PUBLIC_ERROR_RESPONSES

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
    dependencies=[Depends(rate_limit("register", "registration"))],
    responses={**PUBLIC_ERROR_RESPONSES},
)
async def register(
    register_request: RegisterRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """
    Register a new account and sign it in.

    Rate limited: 3 registrations per hour per client.
    """
    return await auth_service.register(
        register_request,
        user_agent=client.user_agent,
        ip_address=client.ip_address,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Authenticate user",
    dependencies=[Depends(rate_limit("login", "login"))],
    responses={**PUBLIC_ERROR_RESPONSES, **AUTH_ERROR_RESPONSES},
)
async def login(
    login_request: LoginRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """
    Authenticate with email and password.

    Returns the same error whether the email is unknown or the password is
    wrong. Rate limited: 5 attempts per 15 minutes per client, counting
    successful attempts too.
    """
    return await auth_service.login(
        login_request.email,
        login_request.password,
        user_agent=client.user_agent,
        ip_address=client.ip_address,
    )


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Rotate a refresh token",
    dependencies=[Depends(rate_limit("refresh", "api"))],
    responses={**PUBLIC_ERROR_RESPONSES, **AUTH_ERROR_RESPONSES},
)
async def refresh(
    refresh_request: RefreshRequest,
    client: ClientContext = Depends(get_client_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> RefreshResponse:
    """
    Exchange a refresh token for a new token pair.

    The presented token is revoked; use the returned refresh token next time.
    """
    tokens = await auth_service.refresh(
        refresh_request.refresh_token,
        user_agent=client.user_agent,
        ip_address=client.ip_address,
    )
    return RefreshResponse(tokens=tokens)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a session",
)
async def logout(
    logout_request: Optional[LogoutRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
) -> Response:
    """End the session of the given refresh token. Always succeeds."""
    await auth_service.logout(logout_request.refresh_token if logout_request else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/me",
    response_model=UserInfo,
    summary="Current user",
    responses={**AUTH_ERROR_RESPONSES},
)
async def me(user: UserInfo = Depends(require_auth)) -> UserInfo:
    """Return the account of the bearer token."""
    return user


@router.post(
    "/send-otp",
    response_model=SendOtpResponse,
    summary="Send an email verification code",
    dependencies=[Depends(rate_limit("send-otp", "api"))],
    responses={**PUBLIC_ERROR_RESPONSES, 404: COMMON_ERROR_RESPONSES[404]},
)
async def send_otp(
    otp_request: SendOtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> SendOtpResponse:
    """
    Email a new 6-digit verification code.

    Any previously sent code stops working.
    """
    expires_in = await auth_service.send_otp(otp_request.email)
    return SendOtpResponse(message="Verification code sent to your email", expires_in=expires_in)


@router.post(
    "/verify-otp",
    response_model=VerifyOtpResponse,
    summary="Verify an email address",
    dependencies=[Depends(rate_limit("verify-otp", "login"))],
    responses={**PUBLIC_ERROR_RESPONSES, 404: COMMON_ERROR_RESPONSES[404]},
)
async def verify_otp(
    verify_request: VerifyOtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> VerifyOtpResponse:
    """
    Verify the account email with a code from ``/auth/send-otp``.

    Rate limited like login: 5 attempts per 15 minutes per client.
    """
    await auth_service.verify_otp(verify_request.email, verify_request.otp)
    return VerifyOtpResponse(message="Email verified successfully!", email_verified=True)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset link",
    dependencies=[Depends(rate_limit("forgot-password", "api"))],
    responses={**PUBLIC_ERROR_RESPONSES},
)
async def forgot_password(
    forgot_request: ForgotPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """
    Email a password reset link.

    The response is identical whether or not the email is registered.
    """
    message = await auth_service.forgot_password(forgot_request.email)
    return MessageResponse(message=message)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password",
    dependencies=[Depends(rate_limit("reset-password", "api"))],
    responses={**PUBLIC_ERROR_RESPONSES},
)
async def reset_password(
    reset_request: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """
    Set a new password with a reset token.

    Signs the account out of every session.
    """
    await auth_service.reset_password(reset_request.token, reset_request.password)
    return MessageResponse(
        message="Password reset successfully. Please log in with your new password."
    )
