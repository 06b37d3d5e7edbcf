from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.database.connection import get_db
from app.database.repositories.user_repository import UserRepository
from app.api.v1.auth import get_current_user
from app.models.user import User
from app.schemas.user import NotificationPreferences, NotificationPreferencesUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/preferences", response_model=NotificationPreferences)
async def get_preferences(current_user: User = Depends(get_current_user)):
    """Get the current user's notification preferences"""
    return current_user.notification_preferences


@router.put("/me/preferences", response_model=NotificationPreferences)
async def update_preferences(
    preferences: NotificationPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update the current user's notification preferences"""
    user = UserRepository(db).update_preferences(current_user, preferences.model_dump(exclude_none=True))
    return user.notification_preferences
