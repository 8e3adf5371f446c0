"""
Contact model for Identity Reconciliation API
This module defines the Contact database model for storing customer
contact information and managing identity linking relationships.
Supports primary/secondary contact hierarchy and soft delete functionality.
"""

import enum

from sqlalchemy import Column, String, Integer, ForeignKey, Index, CheckConstraint

from errors import InvalidTransitionError
from .base import BaseModel


class LinkPrecedence(str, enum.Enum):
    """
    Precedence state of a contact

    The only legal transition is PRIMARY -> SECONDARY (demotion).
    A secondary is never promoted back.
    """
    PRIMARY = "primary"
    SECONDARY = "secondary"

    def demote(self) -> "LinkPrecedence":
        if self is not LinkPrecedence.PRIMARY:
            raise InvalidTransitionError(f"cannot demote a {self.value} contact")
        return LinkPrecedence.SECONDARY


class Contact(BaseModel):
    """
    Contact model representing customer contact information

    Stores email and phone number data with linking relationships
    to support identity reconciliation. Each contact can be either
    'primary' (independent) or 'secondary' (linked to a primary contact).

    Database Table: contacts
    """
    __tablename__ = "contacts"

    # Contact information fields - at least one must be provided
    phone_number = Column(
        String(20),
        nullable=True,
        index=True,
        comment="Customer phone number, digits only"
    )

    email = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Customer email address, lower-cased"
    )

    # Identity linking fields
    linked_id = Column(
        Integer,
        ForeignKey("contacts.id"),
        nullable=True,
        index=True,
        comment="ID of the primary contact this secondary contact links to"
    )

    link_precedence = Column(
        String(10),
        nullable=False,
        default=LinkPrecedence.PRIMARY.value,
        comment="Either 'primary' (independent contact) or 'secondary' (linked contact)"
    )

    # Database constraints
    __table_args__ = (
        CheckConstraint(
            link_precedence.in_([p.value for p in LinkPrecedence]),
            name="valid_link_precedence"
        ),

        CheckConstraint(
            "(phone_number IS NOT NULL) OR (email IS NOT NULL)",
            name="contact_info_required"
        ),

        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="secondary_must_have_linked_id"
        ),

        Index("ix_contact_email_phone", email, phone_number),
        Index("ix_contact_precedence_linked", link_precedence, linked_id),
    )

    def __repr__(self):
        """String representation showing key contact information"""
        contact_info = []
        if self.email:
            contact_info.append(f"email={self.email}")
        if self.phone_number:
            contact_info.append(f"phone={self.phone_number}")

        return (
            f"<Contact(id={self.id}, "
            f"{', '.join(contact_info)}, "
            f"precedence={self.link_precedence})>"
        )

    @property
    def precedence(self) -> LinkPrecedence:
        return LinkPrecedence(self.link_precedence)

    @property
    def sort_key(self):
        """Creation order, ties broken by id"""
        return (self.created_at, self.id)

    def is_primary(self):
        """Check if this is a primary contact"""
        return self.link_precedence == LinkPrecedence.PRIMARY.value

    def is_secondary(self):
        """Check if this is a secondary contact"""
        return self.link_precedence == LinkPrecedence.SECONDARY.value

    def primary_id(self):
        """Id of the primary this contact belongs to (its own id for primaries)"""
        if self.is_primary():
            return self.id
        return self.linked_id

    def to_dict(self):
        """Convert contact to dictionary with formatted timestamps"""
        data = super().to_dict()

        for field in ("created_at", "updated_at", "deleted_at"):
            if data.get(field):
                data[field] = data[field].isoformat()

        return data
