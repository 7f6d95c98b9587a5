from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func

from ..db.session import get_session
from ..models.newsletter import NewsletterSubscriber
from ..utils.validators import is_valid_email, normalize_email
from .logging import log_event


class NewsletterService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def subscribe(self, email: str, user_id: Optional[int] = None) -> Dict:
        """Subscribe or reactivate ``email``; an already active address is rejected."""
        addr = normalize_email(email)
        if not is_valid_email(addr):
            raise ValueError("Email không hợp lệ")
        with self._session_factory() as session:
            sub = session.query(NewsletterSubscriber).filter(NewsletterSubscriber.email == addr).first()
            if sub is not None and sub.is_active:
                raise ValueError("Email này đã đăng ký nhận tin rồi")
            if sub is not None:
                sub.is_active = True
                sub.unsubscribed_at = None
                sub.subscribed_at = datetime.now()
                if user_id and not sub.user_id:
                    sub.user_id = user_id
                action = "reactivated"
            else:
                sub = NewsletterSubscriber(email=addr, user_id=user_id or None, is_active=True)
                session.add(sub)
                action = "subscribed"
            session.flush()
            log_event("info", f"newsletter.{action}", email=addr)
            return {"action": action, "subscriber": sub.to_dict()}

    def unsubscribe(self, email: str) -> bool:
        addr = normalize_email(email)
        with self._session_factory() as session:
            sub = (
                session.query(NewsletterSubscriber)
                .filter(NewsletterSubscriber.email == addr, NewsletterSubscriber.is_active.is_(True))
                .first()
            )
            if sub is None:
                return False
            sub.is_active = False
            sub.unsubscribed_at = datetime.now()
            log_event("info", "newsletter.unsubscribed", email=addr)
            return True

    def is_email_subscribed(self, email: str) -> bool:
        addr = normalize_email(email)
        with self._session_factory() as session:
            return (
                session.query(NewsletterSubscriber.id)
                .filter(NewsletterSubscriber.email == addr, NewsletterSubscriber.is_active.is_(True))
                .first()
                is not None
            )

    def is_user_subscribed(self, user_id: int) -> bool:
        with self._session_factory() as session:
            return (
                session.query(NewsletterSubscriber.id)
                .filter(NewsletterSubscriber.user_id == user_id, NewsletterSubscriber.is_active.is_(True))
                .first()
                is not None
            )

    def active_subscribers(self) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                session.query(NewsletterSubscriber)
                .filter(NewsletterSubscriber.is_active.is_(True))
                .order_by(NewsletterSubscriber.subscribed_at.desc(), NewsletterSubscriber.id.desc())
                .all()
            )
            return [r.to_dict() for r in rows]

    def count_active(self) -> int:
        with self._session_factory() as session:
            return int(
                session.query(func.count(NewsletterSubscriber.id))
                .filter(NewsletterSubscriber.is_active.is_(True))
                .scalar()
                or 0
            )

    def link_to_user(self, email: str, user_id: int) -> None:
        """Attach an anonymous subscription to the account that registered with the same email."""
        addr = normalize_email(email)
        with self._session_factory() as session:
            session.query(NewsletterSubscriber).filter(
                NewsletterSubscriber.email == addr, NewsletterSubscriber.user_id.is_(None)
            ).update({NewsletterSubscriber.user_id: user_id}, synchronize_session=False)
