"""
Role grants (admin, partner, user) for accounts held by the auth provider.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String, UniqueConstraint

from tapn.db.base import Base, TimestampMixin


class UserRole(Base, TimestampMixin):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
        CheckConstraint("role IN ('admin', 'partner', 'user')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<UserRole(user={self.user_id}, role={self.role})>"
