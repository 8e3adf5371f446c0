"""
Set-oriented contact queries used by the reconciliation core
Every read goes through the caller's transaction, skips excluded rows,
locks what it returns and is ordered by (created_at, id).
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import Select, select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from models import Contact, LinkPrecedence, utc_now

logger = logging.getLogger(__name__)


class ContactStore:
    """Thin query/insert/update surface over the contacts table"""

    def __init__(self, session: AsyncSession, lock_rows: bool = True):
        self.session = session
        self.lock_rows = lock_rows

    def _active(self) -> Select:
        query = (
            select(Contact)
            .where(Contact.deleted_at.is_(None))
            .order_by(Contact.created_at, Contact.id)
            .execution_options(populate_existing=True)
        )
        if self.lock_rows:
            # FOR UPDATE is dropped by dialects without row locks (SQLite)
            query = query.with_for_update()
        return query

    async def _fetch(self, query: Select) -> List[Contact]:
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_matching(self, email: Optional[str], phone_number: Optional[str]) -> List[Contact]:
        """Contacts sharing the email OR the phone number (only non-null sides are compared)"""
        conditions = []
        if email:
            conditions.append(Contact.email == email)
        if phone_number:
            conditions.append(Contact.phone_number == phone_number)

        if not conditions:
            return []

        return await self._fetch(self._active().where(or_(*conditions)))

    async def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        ids = sorted(set(ids))
        if not ids:
            return []
        return await self._fetch(self._active().where(Contact.id.in_(ids)))

    async def find_linked_to(self, primary_ids: Iterable[int]) -> List[Contact]:
        primary_ids = sorted(set(primary_ids))
        if not primary_ids:
            return []
        return await self._fetch(self._active().where(Contact.linked_id.in_(primary_ids)))

    async def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        precedence: LinkPrecedence,
        linked_id: Optional[int] = None
    ) -> Contact:
        """Insert a contact and flush so the id is assigned"""
        now = utc_now()
        contact = Contact(
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=precedence.value,
            created_at=now,
            updated_at=now
        )
        self.session.add(contact)
        await self.session.flush()
        logger.info(f"Created {precedence.value} contact {contact.id} (linked_id={linked_id})")
        return contact

    async def update_many(self, *criteria, **values) -> int:
        """Bulk update matching rows, refreshing updated_at. Returns the affected row count."""
        values.setdefault("updated_at", utc_now())
        result = await self.session.execute(
            update(Contact)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount
