"""
Notification Routes

GET /notifications - List notifications (unread_only filter)
GET /notifications/unread-count - Unread count
GET /notifications/preferences - Notification preferences
PUT /notifications/preferences - Update preferences
PATCH /notifications/mark-all-read - Mark all as read
PATCH /notifications/{notification_id}/read - Mark one as read
DELETE /notifications/{notification_id} - Delete a notification
POST /notifications - Create a notification (admins may target any user)
"""

from fastapi import APIRouter, HTTPException, Depends, Query

from app.core.auth import get_current_user
from app.services import notification_service
from app.schemas.schemas import NotificationCreate, NotificationPreferencesUpdate, MessageResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user)
):
    result = notification_service.list_notifications(user, unread_only, limit, (page - 1) * limit)
    return {
        "notifications": result["notifications"],
        "pagination": {"page": page, "limit": limit, "total": result["total"]}
    }


@router.get("/unread-count")
async def unread_count(user: dict = Depends(get_current_user)):
    return {"count": notification_service.unread_count(user)}


@router.get("/preferences")
async def get_preferences(user: dict = Depends(get_current_user)):
    return {"preferences": notification_service.get_preferences(user["id"])}


@router.put("/preferences")
async def update_preferences(data: NotificationPreferencesUpdate, user: dict = Depends(get_current_user)):
    """offers_min_score must stay within 0..100 (checked by the schema)."""
    preferences = notification_service.update_preferences(user["id"], data.model_dump())
    return {"message": "Préférences mises à jour", "preferences": preferences}


@router.patch("/mark-all-read")
async def mark_all_read(user: dict = Depends(get_current_user)):
    count = notification_service.mark_all_read(user)
    return {"message": "Toutes les notifications ont été marquées comme lues", "count": count}


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: str, user: dict = Depends(get_current_user)):
    notification = notification_service.mark_read(user, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification non trouvée")
    return {"message": "Notification marquée comme lue", "notification": notification}


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(notification_id: str, user: dict = Depends(get_current_user)):
    if not notification_service.delete_notification(user, notification_id):
        raise HTTPException(status_code=404, detail="Notification non trouvée")
    return MessageResponse(message="Notification supprimée")


@router.post("", status_code=201)
async def create_notification(data: NotificationCreate, user: dict = Depends(get_current_user)):
    """Non-admins may only notify themselves."""
    target = data.user_id or str(user["id"])
    if user["role"] != "ADMIN" and str(target) != str(user["id"]):
        raise HTTPException(status_code=403, detail="Permissions insuffisantes")

    notification = notification_service.create_notification(target, data.type.value, data.payload)
    if notification is None:
        raise HTTPException(status_code=500, detail="Erreur lors de la création de la notification")
    return {"message": "Notification créée", "notification": notification}
