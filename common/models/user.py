from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, func
from sqlalchemy.orm import relationship
from .base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    birthday = Column(Date, nullable=True)
    avatar_url = Column(String(512), nullable=True)
    role = Column(String(16), nullable=False, default="customer")
    is_active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    verification_code = Column(String(6), nullable=True)
    verification_expires = Column(DateTime, nullable=True)
    reset_code = Column(String(6), nullable=True)
    reset_expires = Column(DateTime, nullable=True)
    marketing_consent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "birthday": self.birthday.isoformat() if self.birthday else None,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "is_active": bool(self.is_active),
            "email_verified": bool(self.email_verified),
            "marketing_consent": bool(self.marketing_consent),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
