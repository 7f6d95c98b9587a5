from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship
from .base import Base


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    address_line = Column(String(512), nullable=False)
    ward = Column(String(128), nullable=True)
    district = Column(String(128), nullable=True)
    city = Column(String(128), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    user = relationship("User", back_populates="addresses")

    def one_line(self) -> str:
        parts = [self.address_line, self.ward, self.district, self.city]
        return ", ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "address_line": self.address_line,
            "ward": self.ward,
            "district": self.district,
            "city": self.city,
            "is_default": bool(self.is_default),
        }
