"""
Global feature toggles.

The AdminSettings row is read once per request and handed to routes as an
immutable `FeatureSettings` snapshot via `Depends(get_feature_settings)`.
"""
from fastapi import Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import AuthorizationError
from app.db.models import AdminSettings
from app.db.session import get_db

SETTINGS_ID = 1


class FeatureSettings(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    chat_enabled: bool = True
    direct_decision_enabled: bool = True
    print_enabled: bool = True
    export_enabled: bool = True

    def require(self, feature: str, message: str) -> None:
        if not getattr(self, feature):
            raise AuthorizationError(message, {"feature": feature})


def load_admin_settings(db: Session) -> AdminSettings:
    """Fetch the singleton row, creating it with defaults on first access."""
    row = db.query(AdminSettings).filter(AdminSettings.id == SETTINGS_ID).first()
    if row is not None:
        return row

    row = AdminSettings(id=SETTINGS_ID)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first
        db.rollback()
        return db.query(AdminSettings).filter(AdminSettings.id == SETTINGS_ID).one()
    db.refresh(row)
    return row


def update_admin_settings(db: Session, values: FeatureSettings) -> AdminSettings:
    row = load_admin_settings(db)
    for key, value in values.model_dump().items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


async def get_feature_settings(db: Session = Depends(get_db)) -> FeatureSettings:
    return FeatureSettings.model_validate(load_admin_settings(db))
