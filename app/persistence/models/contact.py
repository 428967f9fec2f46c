"""Contact model."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from app.domain.models.identity import LinkPrecedence
from app.persistence.database import Base


class Contact(Base):
    """A single email/phone observation belonging to an identity cluster."""

    __tablename__ = "contacts"
    __table_args__ = (
        CheckConstraint(
            "link_precedence IN ('primary', 'secondary')",
            name="ck_contacts_link_precedence",
        ),
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contacts_has_identifier",
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=True, index=True)
    phone_number = Column(String(50), nullable=True, index=True)
    # Set only on secondaries, always the id of the cluster's current primary
    linked_id = Column(Integer, ForeignKey("contacts.id"), nullable=True, index=True)
    link_precedence = Column(String(20), nullable=False, default=LinkPrecedence.PRIMARY.value)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Contact(id={self.id}, email={self.email}, phone_number={self.phone_number}, "
            f"link_precedence={self.link_precedence}, linked_id={self.linked_id})>"
        )
