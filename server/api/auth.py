import logging
import uuid

from core.authentication import AUTH_COOKIE_NAME, generate_jwt_token, get_current_user_id
from core.config import settings
from core.logging_setup import log_step
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from integrations.oauth import STATE_COOKIE_NAME, OAuthClient
from pydantic import BaseModel
from services.app_services import AppServices

from api.dependencies import get_services

logger = logging.getLogger(__name__)

SESSION_MAX_AGE_SECONDS = 12 * 60 * 60


class UserResponse(BaseModel):
    id: int
    name: str | None
    email: str | None


class LogoutResponse(BaseModel):
    success: bool


def _require_oauth(services: AppServices) -> OAuthClient:
    if services.oauth is None:
        raise HTTPException(status_code=503, detail="Login is not configured.")
    return services.oauth


def create_auth_router() -> APIRouter:
    """
    Creates the REST API router for auth.
    """
    router = APIRouter(
        prefix="/api/auth",
    )
    LOG_STEP = "API-AUTH"

    @router.get("/login")
    async def login(services: AppServices = Depends(get_services)):
        """
        Starts the OAuth login: stores a state value in a short-lived cookie
        and redirects to the identity provider.
        """
        with log_step(LOG_STEP):
            oauth = _require_oauth(services)
            state = uuid.uuid4().hex
            response = RedirectResponse(url=oauth.login_url(state))
            response.set_cookie(
                key=STATE_COOKIE_NAME,
                value=state,
                max_age=600,
                httponly=True,
                secure=settings.APP_BASE_URL.startswith("https"),
                samesite="lax",
            )
            return response

    @router.get("/oauth/callback")
    async def oauth_callback(request: Request, services: AppServices = Depends(get_services)):
        """
        Handles the identity provider's redirect. Creates or refreshes the
        user and sets the session cookie.
        """
        with log_step(LOG_STEP):
            oauth = _require_oauth(services)

            error = request.query_params.get("error")
            code = request.query_params.get("code")
            url_state = request.query_params.get("state")
            cookie_state = request.cookies.get(STATE_COOKIE_NAME)

            if error:
                raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
            if not code or not url_state or not cookie_state:
                raise HTTPException(status_code=400, detail="Missing auth data.")
            if url_state != cookie_state:
                logger.warning("OAuth callback state does not match the login cookie.")
                raise HTTPException(status_code=400, detail="Auth state mismatch.")

            profile = await oauth.fetch_profile(code)
            user = await services.repository.upsert_user(
                profile.open_id, name=profile.name, email=profile.email
            )

            redirect_response = RedirectResponse(url="/")
            redirect_response.set_cookie(
                key=AUTH_COOKIE_NAME,
                value=generate_jwt_token(user.id),
                max_age=SESSION_MAX_AGE_SECONDS,
                httponly=True,
                secure=settings.APP_BASE_URL.startswith("https"),
                samesite="lax",
            )
            redirect_response.delete_cookie(STATE_COOKIE_NAME)
            logger.info(f"Signed in user {user.id} ({profile.email or profile.open_id}).")
            return redirect_response

    @router.get("/me", response_model=UserResponse)
    async def get_me(
        user_id: int = Depends(get_current_user_id),
        services: AppServices = Depends(get_services),
    ):
        """
        Returns the logged-in user's profile.
        """
        with log_step(LOG_STEP):
            user = await services.repository.get_user(user_id)
            if user is None:
                logger.warning(f"Token refers to unknown user {user_id}.")
                raise HTTPException(status_code=404, detail="User not found")
            return UserResponse(id=user.id, name=user.name, email=user.email)

    @router.post("/logout", response_model=LogoutResponse)
    async def logout(response: Response, user_id: int = Depends(get_current_user_id)):
        """
        Logs the user out by clearing the auth cookie.
        """
        with log_step(LOG_STEP):
            logger.info(f"Handling logout for user: {user_id}")
            response.delete_cookie(AUTH_COOKIE_NAME)
            return LogoutResponse(success=True)

    return router
