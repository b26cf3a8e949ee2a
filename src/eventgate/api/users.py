"""
User profile endpoints.

- GET /v1/users/{userId}
- DELETE /v1/users/{userId} (erasure)

Registered after the query router so /v1/users/query is not captured as
a user id.
"""

import structlog
from fastapi import APIRouter, Depends, Request

from ..core.context import RequestContext
from ..core.exceptions import NotFoundError
from ..models.common import ErrorResponse, utcnow
from ..models.user import UserDeletedResponse, UserResponse
from ..storage.base import UserStore
from .deps import authenticated_context

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_user_store(request: Request) -> UserStore:
    return request.app.state.stores.users


@router.get(
    "/v1/users/{user_id}",
    response_model=UserResponse,
    response_model_by_alias=True,
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Unknown user"},
    },
    summary="Get a user profile",
)
async def get_user(
    user_id: str,
    context: RequestContext = Depends(authenticated_context),
    users: UserStore = Depends(get_user_store),
) -> UserResponse:
    user = await users.get(context.tenant_id, user_id)
    if user is None:
        raise NotFoundError("User not found")

    return UserResponse(data=user, timestamp=utcnow(), request_id=context.request_id)


@router.delete(
    "/v1/users/{user_id}",
    response_model=UserDeletedResponse,
    response_model_by_alias=True,
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Unknown user"},
    },
    summary="Erase a user profile",
    description="""
    Delete the caller's stored profile for this user. Events already
    written are immutable and are not touched.
    """,
)
async def delete_user(
    user_id: str,
    context: RequestContext = Depends(authenticated_context),
    users: UserStore = Depends(get_user_store),
) -> UserDeletedResponse:
    deleted = await users.delete(context.tenant_id, user_id)
    if not deleted:
        raise NotFoundError("User not found")

    logger.info("User erased", tenant_id=context.tenant_id, user_id=user_id, request_id=context.request_id)
    return UserDeletedResponse(user_id=user_id, deleted=True, timestamp=utcnow(), request_id=context.request_id)
