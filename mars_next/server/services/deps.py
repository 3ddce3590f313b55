"""
Request Dependencies.

Provides the shared ChatService, the authenticated user and the project
access check to API endpoints.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from mars_next.core.logging_config import get_logger
from mars_next.server.core.config import settings
from mars_next.server.services.chat_service import ChatService, get_chat_service

logger = get_logger(__name__)

ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]


async def get_current_user_id(request: Request) -> str:
    """
    Resolve the authenticated user.

    The session layer in front of the service forwards the user id in the
    ``AUTH_USER_HEADER`` header. Override this dependency to plug in another
    authentication scheme.
    """
    user_id = request.headers.get(settings.auth_user_header, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


CurrentUserDep = Annotated[str, Depends(get_current_user_id)]


async def require_project_access(project_id: str, user_id: CurrentUserDep, chat_service: ChatServiceDep) -> str:
    """Return ``project_id`` when the current user may use it; 403 otherwise."""
    if not await chat_service.user_has_project_access(user_id, project_id):
        logger.warning(f"User {user_id} denied access to project {project_id}")
        raise HTTPException(status_code=403, detail="Forbidden")
    return project_id


ProjectAccessDep = Annotated[str, Depends(require_project_access)]
