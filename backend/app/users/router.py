"""Users REST API router.

Endpoints:
    POST /api/users/create                     - Create a user and issue a token
    GET  /api/users                            - List users (most recently active first)
    GET  /api/users/{user_id}                  - Look up a user by id
    GET  /api/users/username/{username}        - Look up a user by username
    GET  /api/users/check-username/{username}  - Check username availability
    PUT  /api/users/{user_id}/status           - Update own status (authenticated)
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.auth.middleware import require_user
from app.auth.service import Identity, TokenService

from .schemas import CreateUserRequest, CreateUserResponse, UpdateStatusRequest, UserResponse
from .service import DEFAULT_PAGE_SIZE, UserDirectory, UsernameTakenError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20


def get_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


@router.post("/create", response_model=CreateUserResponse)
async def create_user(
    body: CreateUserRequest,
    directory: UserDirectory = Depends(get_directory),
    tokens: TokenService = Depends(get_token_service),
) -> CreateUserResponse:
    """Create a user and return it together with a bearer token.

    Raises:
        HTTPException 400: Missing name/username or username length out of range.
        HTTPException 409: Username already taken.
    """
    if not body.name.strip() or not body.username.strip():
        raise HTTPException(status_code=400, detail="Name and username are required")

    username = body.username.strip()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters",
        )

    try:
        user = directory.create(body.name, username, body.avatar)
    except UsernameTakenError:
        raise HTTPException(status_code=409, detail="Username is already taken")

    token = tokens.generate_token(user.id, user.username)
    return CreateUserResponse(
        id=user.id,
        name=user.name,
        username=user.username,
        avatar=user.avatar,
        status=user.status,
        token=token,
        createdAt=user.createdAt,
    )


@router.get("", response_model=List[UserResponse])
async def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    directory: UserDirectory = Depends(get_directory),
) -> List[UserResponse]:
    return [UserResponse.from_user(u) for u in directory.list_users(skip, limit)]


@router.get("/check-username/{username}")
async def check_username(
    username: str, directory: UserDirectory = Depends(get_directory)
) -> dict:
    return {"available": not directory.username_exists(username)}


@router.get("/username/{username}", response_model=UserResponse)
async def get_user_by_username(
    username: str, directory: UserDirectory = Depends(get_directory)
) -> UserResponse:
    user = directory.get_by_username(username)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str, directory: UserDirectory = Depends(get_directory)
) -> UserResponse:
    user = directory.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(user)


@router.put("/{user_id}/status", response_model=UserResponse)
async def update_status(
    user_id: str,
    body: UpdateStatusRequest,
    identity: Identity = Depends(require_user),
    directory: UserDirectory = Depends(get_directory),
) -> UserResponse:
    """Update a user's status. Callers may only update themselves."""
    if identity.user_id != user_id:
        logger.warning(f"[Users] User {identity.user_id} tried to update status of {user_id}")
        raise HTTPException(status_code=403, detail="Cannot update another user's status")

    user = directory.update_status(user_id, body.status)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(user)
