"""Wedding workspace: the tenant's site, addressed by a globally unique slug."""
import uuid

from sqlalchemy import Column, String, Boolean, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base, JSONType

DEFAULT_PRIMARY_COLOR = "#ae1725"
DEFAULT_SECONDARY_COLOR = "#c92a38"
DEFAULT_FONT_FAMILY = "playfair"


def default_wedding_config(theme_id: str) -> dict:
    return {
        "theme": {
            "name": theme_id,
            "primaryColor": DEFAULT_PRIMARY_COLOR,
            "secondaryColor": DEFAULT_SECONDARY_COLOR,
            "fontFamily": DEFAULT_FONT_FAMILY,
        },
        "features": {
            "gallery": True,
            "guestbook": True,
            "rsvp": True,
            "liveWall": False,
            "geoFencing": False,
        },
        "moderation": {"enabled": True, "autoApprove": True},
        "timeline": [],
    }


class Wedding(Base):
    __tablename__ = "weddings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    slug = Column(String(50), unique=True, nullable=False)
    pin_code = Column(String(6), nullable=False)  # guest access code
    name = Column(String(255), nullable=False)
    bride_name = Column(String(255), nullable=True)
    groom_name = Column(String(255), nullable=True)
    wedding_date = Column(Date, nullable=True)

    config = Column(JSONType, nullable=False)
    is_published = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("Profile", backref="weddings")
