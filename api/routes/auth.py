"""
api/routes/auth.py -- Local account registration and password login.

Routes:
  POST /register  -- create account, 201 {message, token, user}
  POST /login     -- password login, 200 {message, token, user}

Security:
  Both routes are rate-limited per client IP (LOGIN_RATE_LIMIT).
  AuthService.authenticate() does the timing equalization -- never inline
  get_by_username() + verify() here.
  Unknown username and wrong password return the same 401.
  Cache-Control: no-store on every response that carries a token.
"""

from fastapi import APIRouter, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import AuthResponse, LoginRequest, RegisterRequest, UserPublic
from auth.service import AuthService

router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=201)
@limiter.limit(login_rate_limit)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create an employee account and return a session token for it.

    409 when the username or email is already registered.
    """
    auth: AuthService = request.app.state.auth
    grant = auth.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
    )
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(message="User registered successfully", token=grant.token, user=UserPublic.from_user(grant.user))


@router.post("/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    auth: AuthService = request.app.state.auth
    grant = auth.authenticate(body.username, body.password)
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(message="Login successful", token=grant.token, user=UserPublic.from_user(grant.user))
