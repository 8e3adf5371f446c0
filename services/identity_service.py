"""
Identity Service - Core business logic for identity reconciliation
Locates the contact cluster for an (email, phone) pair, keeps the oldest
primary, demotes competing primaries, appends new information and builds
the consolidated response. Everything for one request runs in one transaction.
"""

import logging
from itertools import chain
from typing import Iterable, List, Optional, Tuple

from database import DatabaseManager, db_manager
from errors import ContactNotFoundError, IntegrityFaultError, InvalidInputError
from models import Contact, LinkPrecedence
from schemas.identify import ContactResponse
from services.contact_store import ContactStore

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Core service for identity reconciliation logic
    Handles all business rules for linking customer contacts
    """

    def __init__(self, manager: Optional[DatabaseManager] = None):
        self.db_manager = manager or db_manager

    async def identify_contact(
        self,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> ContactResponse:
        """
        Main orchestration method for identity reconciliation

        Algorithm:
        1. Locate the cluster reachable from the email or phone
        2. If empty -> create new primary contact
        3. Otherwise keep the oldest primary, demote the rest
        4. Append a secondary if the pair carries new information
        5. Return consolidated contact information read after the writes
        """
        if not email and not phone_number:
            raise InvalidInputError("Either email or phoneNumber must be provided")

        async with self.db_manager.transaction() as session:
            store = ContactStore(session)

            cluster = await self.locate_cluster(store, email, phone_number)
            if not cluster:
                primary = await store.create(email, phone_number, LinkPrecedence.PRIMARY)
                return self.build_response(primary, [])

            primary, _ = await self.resolve_primary(store, cluster)

            if self.needs_new_record(email, phone_number, cluster):
                await store.create(
                    email, phone_number, LinkPrecedence.SECONDARY, linked_id=primary.id
                )

            secondaries = await store.find_linked_to([primary.id])
            return self.build_response(primary, secondaries)

    async def get_contact_summary(self, contact_id: int) -> ContactResponse:
        """Consolidated view of the cluster a contact belongs to, without writing anything"""
        async with self.db_manager.transaction() as session:
            store = ContactStore(session, lock_rows=False)

            found = await store.find_by_ids([contact_id])
            if not found:
                raise ContactNotFoundError(f"Contact {contact_id} not found")

            primaries = await store.find_by_ids([found[0].primary_id()])
            if not primaries or not primaries[0].is_primary():
                raise IntegrityFaultError(
                    f"Contact {contact_id} is not linked to an active primary contact",
                    details={"contactId": contact_id, "linkedId": found[0].linked_id}
                )

            secondaries = await store.find_linked_to([primaries[0].id])
            return self.build_response(primaries[0], secondaries)

    async def locate_cluster(
        self,
        store: ContactStore,
        email: Optional[str],
        phone_number: Optional[str]
    ) -> List[Contact]:
        """
        Find every active contact reachable from the email or phone

        Direct matches, the primaries they point to, and every secondary
        of those primaries. One primary hop is enough because secondaries
        never link to other secondaries; a cluster holding several primaries
        (two clusters about to merge) comes back whole.
        """
        matches = await store.find_matching(email, phone_number)
        if not matches:
            return []

        ids = set()
        for contact in matches:
            ids.add(contact.id)
            if contact.linked_id is not None:
                ids.add(contact.linked_id)

        network = await store.find_by_ids(ids)
        primary_ids = [c.id for c in network if c.is_primary()]
        siblings = await store.find_linked_to(primary_ids)

        members = {c.id: c for c in chain(matches, network, siblings)}
        return sorted(members.values(), key=lambda c: c.sort_key)

    async def resolve_primary(
        self,
        store: ContactStore,
        cluster: List[Contact]
    ) -> Tuple[Contact, List[Contact]]:
        """
        Keep the oldest primary and demote the others

        Demoted primaries become secondaries of the true primary and their
        own secondaries are re-linked to it. A cluster that already has a
        single primary is left untouched.
        """
        primaries = sorted((c for c in cluster if c.is_primary()), key=lambda c: c.sort_key)
        if not primaries:
            logger.error(f"No primary contact in cluster {[c.id for c in cluster]}")
            raise IntegrityFaultError(
                "Database integrity error: no primary contact found in cluster",
                details={"contactIds": [c.id for c in cluster]}
            )

        true_primary, other_primaries = primaries[0], primaries[1:]
        if not other_primaries:
            return true_primary, []

        # each competing primary must be allowed to step down before any row changes
        demoted = [c.precedence.demote() for c in other_primaries]
        other_ids = [c.id for c in other_primaries]

        # the precedence guard keeps demotion one-way at the row level too
        await store.update_many(
            Contact.id.in_(other_ids),
            Contact.link_precedence == LinkPrecedence.PRIMARY.value,
            link_precedence=demoted[0].value,
            linked_id=true_primary.id
        )
        relinked = await store.update_many(
            Contact.linked_id.in_(other_ids),
            linked_id=true_primary.id
        )

        logger.info(
            f"Contact {true_primary.id} absorbed primaries {other_ids} "
            f"({relinked} secondaries re-linked)"
        )
        return true_primary, other_primaries

    @staticmethod
    def needs_new_record(
        email: Optional[str],
        phone_number: Optional[str],
        cluster: Iterable[Contact]
    ) -> bool:
        """
        Check if the request contains information the cluster doesn't have yet
        An exact (email, phone) duplicate never does.
        """
        cluster = list(cluster)
        if any(c.email == email and c.phone_number == phone_number for c in cluster):
            return False

        known_emails = {c.email for c in cluster if c.email}
        known_phones = {c.phone_number for c in cluster if c.phone_number}

        has_new_email = bool(email) and email not in known_emails
        has_new_phone = bool(phone_number) and phone_number not in known_phones
        return has_new_email or has_new_phone

    @staticmethod
    def build_response(primary: Contact, secondaries: Iterable[Contact]) -> ContactResponse:
        """
        Build the consolidated response
        Primary contact info comes first, then secondary info in creation order,
        without duplicates.
        """
        ordered_secondaries = sorted(
            (c for c in secondaries if c.id != primary.id),
            key=lambda c: c.sort_key
        )
        ordered = [primary, *ordered_secondaries]

        return ContactResponse(
            primaryContactId=primary.id,
            emails=list(dict.fromkeys(c.email for c in ordered if c.email)),
            phoneNumbers=list(dict.fromkeys(c.phone_number for c in ordered if c.phone_number)),
            secondaryContactIds=[c.id for c in ordered_secondaries]
        )


# Global service instance
identity_service = IdentityService()
