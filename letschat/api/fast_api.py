"""
FastAPI Router — Auth • Users • Conversations • Messages
========================================================

Purpose
-------
Defines the HTTP API for:
- Authentication: register, login, logout (one device / all devices), token
  verification, profile read/update, user search
- Conversations: create, list, read, update; participants: list, add, remove;
  read markers and key rotation
- Messages: encrypted send, decrypted page reads, edit and delete

Key Notes
---------
- Every response uses the envelope ``{"success": bool, "data"?, "error"?}``.
  Failures raised by the service layer (`ChatServiceError`) are rendered by
  the exception handlers registered in `letschat.main`.
- Auth: ``Authorization: Bearer <jwt>``, falling back to the HttpOnly
  ``token`` cookie set at login. Tokens must belong to a live session.
- Message sends, edits and deletes are also published to the realtime
  channel (`letschat.api.realtime`).
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Query, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from letschat.api.models import (
    ConversationCreationDetails,
    Envelope,
    MessageEdit,
    NewMessage,
    ParticipantsAddition,
    ProfileUpdate,
    UpdateConversationDetails,
    UserCredentials,
    UserData,
)
from letschat.api import realtime
from letschat.database.core import auth as auth_service
from letschat.database.core import conversations as conversation_service
from letschat.database.core import messages as message_service
from letschat.database.core.conversation_encryption import rotate_conversation_key
from letschat.database.core.errors import AuthenticationFailed
from letschat.database.config.config import settings

router = APIRouter(
    prefix="/api",
    responses={status: {"model": Envelope} for status in (400, 401, 403, 404, 409)},
)
"""Creates the FastAPI router in which we define its routes"""

bearer_scheme = HTTPBearer(auto_error=False)


def envelope(data=None) -> dict:
    """Wrap a successful result in the response envelope."""
    return {"success": True, "data": data}


def get_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token: Optional[str] = Cookie(None),
) -> str:
    """Bearer token from the Authorization header, else the `token` cookie."""
    value = credentials.credentials if credentials else token
    if not value:
        raise AuthenticationFailed("Access token required")
    return value


def get_current_user(token: str = Depends(get_token)) -> dict:
    """Resolve the request's token to its user or fail with 401."""
    user = auth_service.verify_token(token=token)
    if user is None:
        raise AuthenticationFailed("Invalid or expired token")
    return user


def _client_details(request: Request) -> dict:
    return {
        "device_info": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }


def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="token",
        value=token,
        httponly=True,
        secure=False,  # True in production (HTTPS)
        samesite="lax",
        max_age=int(settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60,
    )


# -----------------------
# Auth
# -----------------------
@router.post("/auth/register", status_code=201)
async def register(data: UserData, request: Request, response: Response):
    """Register a new user account and log it in.

    Response:
        201: {'success': True, 'data': {'user': {...}, 'token': <jwt>}}
        400: invalid username/password/display name
        409: username taken
    """
    result = auth_service.register(
        username=data.username,
        password=data.password,
        display_name=data.display_name,
        **_client_details(request),
    )
    _set_token_cookie(response, result["token"])
    return envelope(result)


@router.post("/auth/login")
async def login(data: UserCredentials, request: Request, response: Response):
    """Authenticate a user, open a session and set the `token` cookie.

    Response:
        200: {'success': True, 'data': {'user': {...}, 'token': <jwt>}}
        401: invalid credentials
    """
    result = auth_service.login(username=data.username, password=data.password, **_client_details(request))
    _set_token_cookie(response, result["token"])
    return envelope(result)


@router.post("/auth/logout")
async def logout(response: Response, token: str = Depends(get_token)):
    """Revoke the current session. Never fails for an unknown token."""
    auth_service.logout(token=token, connected_user_ids=realtime.manager.online_user_ids())
    response.delete_cookie("token")
    return envelope({"message": "Logged out"})


@router.post("/auth/logout-all")
async def logout_all(response: Response, user: dict = Depends(get_current_user)):
    """Revoke every session of the current user."""
    removed = auth_service.logout_all_devices(
        user_id=user["id"], connected=realtime.manager.is_online(user["id"])
    )
    response.delete_cookie("token")
    return envelope({"sessions_revoked": removed})


@router.get("/auth/verify")
async def verify(user: dict = Depends(get_current_user)):
    return envelope({"valid": True, "user": user})


@router.get("/auth/profile")
async def get_profile(user: dict = Depends(get_current_user)):
    return envelope(auth_service.get_profile(user_id=user["id"]))


@router.put("/auth/profile")
async def update_profile(data: ProfileUpdate, user: dict = Depends(get_current_user)):
    """Update display name and/or status; the new status is broadcast."""
    profile = auth_service.update_profile(user_id=user["id"], display_name=data.display_name, status=data.status)
    if data.status is not None:
        await realtime.publish_user_status(user["id"], data.status)
    return envelope(profile)


@router.get("/auth/search")
async def search_users(
    q: str = Query("", description="Username or display name fragment (2+ characters)."),
    limit: int = Query(20, ge=1, le=50),
    user: dict = Depends(get_current_user),
):
    return envelope(auth_service.search_users(query=q, user_id=user["id"], limit=limit))


# -----------------------
# Conversations
# -----------------------
@router.get("/conversations")
async def list_conversations(user: dict = Depends(get_current_user)):
    """Conversations of the current user, most recently active first."""
    return envelope(conversation_service.get_conversations(user_id=user["id"]))


@router.post("/conversations", status_code=201)
async def create_conversation(data: ConversationCreationDetails, user: dict = Depends(get_current_user)):
    """Create a direct or group conversation (an existing direct one is returned as is)."""
    conversation = conversation_service.create_conversation(
        created_by=user["id"],
        conversation_type=data.type,
        participant_ids=data.participant_ids,
        name=data.name,
        description=data.description,
    )
    return envelope(conversation)


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: UUID, user: dict = Depends(get_current_user)):
    return envelope(conversation_service.get_conversation(conversation_id=conversation_id, user_id=user["id"]))


@router.put("/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: UUID, data: UpdateConversationDetails, user: dict = Depends(get_current_user)
):
    """Rename a group or change its description (admins only)."""
    conversation = conversation_service.update_conversation(
        conversation_id=conversation_id, user_id=user["id"], name=data.name, description=data.description
    )
    return envelope(conversation)


@router.get("/conversations/{conversation_id}/participants")
async def list_participants(conversation_id: UUID, user: dict = Depends(get_current_user)):
    return envelope(conversation_service.get_participants(conversation_id=conversation_id, user_id=user["id"]))


@router.post("/conversations/{conversation_id}/participants")
async def add_participants(
    conversation_id: UUID, data: ParticipantsAddition, user: dict = Depends(get_current_user)
):
    participants = conversation_service.add_participants(
        conversation_id=conversation_id, user_ids=data.user_ids, requester_id=user["id"]
    )
    return envelope(participants)


@router.delete("/conversations/{conversation_id}/participants/{user_id}")
async def remove_participant(conversation_id: UUID, user_id: UUID, user: dict = Depends(get_current_user)):
    """Leave a group (own id) or remove another member (admins only)."""
    result = conversation_service.remove_participant(
        conversation_id=conversation_id, user_id=user_id, requester_id=user["id"]
    )
    await realtime.manager.leave_room(conversation_id, user_id)
    return envelope(result)


@router.post("/conversations/{conversation_id}/read")
async def mark_read(conversation_id: UUID, user: dict = Depends(get_current_user)):
    result = conversation_service.mark_as_read(conversation_id=conversation_id, user_id=user["id"])
    return envelope(result)


@router.post("/conversations/{conversation_id}/rotate-key")
async def rotate_key(conversation_id: UUID, user: dict = Depends(get_current_user)):
    """Replace the conversation key; older messages stay readable."""
    return envelope(rotate_conversation_key(conversation_id=conversation_id, requester_id=user["id"]))


# -----------------------
# Messages
# -----------------------
@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: UUID,
    limit: int = Query(50, ge=1, le=100),
    before: Optional[datetime] = Query(None, description="Only messages created before this instant."),
    user: dict = Depends(get_current_user),
):
    """Decrypted page of messages, oldest first; page backwards with `before`."""
    messages = message_service.get_messages(
        conversation_id=conversation_id, user_id=user["id"], limit=limit, before=before
    )
    return envelope(messages)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def send_message(conversation_id: UUID, data: NewMessage, user: dict = Depends(get_current_user)):
    """Encrypt, store and publish a message.

    Response:
        201: {'success': True, 'data': {'message': {...}, 'attachments': []}}
    """
    event = message_service.send_message(
        conversation_id=conversation_id,
        sender_id=user["id"],
        content=data.content,
        content_type=data.content_type,
        reply_to_id=data.reply_to_id,
    )
    await realtime.publish_new_message(event)
    return envelope(event)


@router.put("/messages/{message_id}")
async def edit_message(message_id: UUID, data: MessageEdit, user: dict = Depends(get_current_user)):
    message = message_service.edit_message(message_id=message_id, user_id=user["id"], content=data.content)
    await realtime.publish_message_edited(message)
    return envelope(message)


@router.delete("/messages/{message_id}")
async def delete_message(message_id: UUID, user: dict = Depends(get_current_user)):
    deleted = message_service.delete_message(message_id=message_id, user_id=user["id"])
    await realtime.publish_message_deleted(deleted)
    return envelope(deleted)
