from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from .base import Base


class Banner(Base):
    __tablename__ = "banners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    subtitle = Column(String(512), nullable=True)
    image_url = Column(String(512), nullable=False)
    link_url = Column(String(512), nullable=True)
    button_text = Column(String(64), nullable=False, default="Xem ngay")
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "image_url": self.image_url,
            "link_url": self.link_url,
            "button_text": self.button_text,
            "display_order": self.display_order,
            "is_active": bool(self.is_active),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }
