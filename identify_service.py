"""Resolve (email, phone) observations into contact clusters."""

import sqlite3
from typing import Iterable, List, Optional

import structlog

from contact_store import ContactStore
from db_models import Contact, ContactResponse, LinkPrecedence
from errors import ErrorKind, IdentifyError, is_lock_timeout, is_unique_violation
from normalization import normalize_email, normalize_phone

logger = structlog.get_logger()

DEFAULT_MAX_RETRIES = 3


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen

def build_response(primary_id: int, cluster: List[Contact]) -> ContactResponse:
    primary = next((c for c in cluster if c.id == primary_id), None)
    secondaries = [c for c in cluster if c.id != primary_id]
    ordered = ([primary] if primary else []) + secondaries

    return ContactResponse(
        primaryContactId=primary_id,
        emails=_unique(c.email for c in ordered),
        phoneNumbers=_unique(c.phoneNumber for c in ordered),
        secondaryContactIds=[c.id for c in secondaries],
    )


def resolve_primaries(store: ContactStore, matches: List[Contact]):
    """Split the primaries behind `matches` into the oldest and the rest."""
    candidate_ids = []
    for contact in matches:
        if contact.linkPrecedence is LinkPrecedence.SECONDARY and contact.linkedId:
            candidate = contact.linkedId
        else:
            candidate = contact.id
        if candidate not in candidate_ids:
            candidate_ids.append(candidate)

    primaries = store.find_by_ids(candidate_ids)
    return primaries[0], primaries[1:]


def merge_clusters(store: ContactStore, true_primary: Contact, superseded: List[Contact]) -> List[Contact]:
    """Fold every superseded primary under `true_primary` and return the cluster."""
    superseded_ids = [p.id for p in superseded]
    if superseded_ids:
        # children move first so nothing is left pointing at a secondary
        store.reparent_children(superseded_ids, true_primary.id)
        store.demote(superseded_ids, true_primary.id)
        logger.info(
            "contact.clusters_merged",
            primary_id=true_primary.id,
            demoted_ids=superseded_ids,
        )

    return store.find_cluster([true_primary.id] + superseded_ids)


def record_new_information(
    store: ContactStore,
    primary_id: int,
    cluster: List[Contact],
    email: Optional[str],
    phone: Optional[str],
) -> Optional[Contact]:
    """Create at most one secondary carrying what the cluster does not know yet."""
    if email is None or phone is None:
        # single-identifier observations are always kept as their own touchpoint
        contact = store.create(email, phone, LinkPrecedence.SECONDARY, primary_id)
    else:
        has_email = any(c.email == email for c in cluster)
        has_phone = any(c.phoneNumber == phone for c in cluster)
        if has_email and has_phone:
            return None
        contact = store.create(
            None if has_email else email,
            None if has_phone else phone,
            LinkPrecedence.SECONDARY,
            primary_id,
        )

    logger.info("contact.secondary_created", contact_id=contact.id, primary_id=primary_id)
    return contact


def resolve_contact(store: ContactStore, email: Optional[str], phone: Optional[str]) -> ContactResponse:
    """Match, merge and record one normalized observation.

    Must run inside store.transaction().
    """
    matches = store.find_matching(email, phone)

    if not matches:
        primary = store.create(email, phone, LinkPrecedence.PRIMARY)
        logger.info("contact.primary_created", contact_id=primary.id)
        return build_response(primary.id, [primary])

    true_primary, superseded = resolve_primaries(store, matches)
    cluster = merge_clusters(store, true_primary, superseded)

    new_contact = record_new_information(store, true_primary.id, cluster, email, phone)
    if new_contact is not None:
        cluster.append(new_contact)

    return build_response(true_primary.id, cluster)


def find_existing_cluster(store: ContactStore, email: Optional[str], phone: Optional[str]) -> Optional[ContactResponse]:
    """Read back the cluster a concurrent request created for this observation."""
    lookups = []
    if email and phone:
        lookups.append((email, phone))
    if email:
        lookups.append((email, None))
    if phone:
        lookups.append((None, phone))

    for lookup_email, lookup_phone in lookups:
        existing = store.find_oldest(lookup_email, lookup_phone)
        if existing is None:
            continue
        primary_id = existing.id if existing.is_primary else existing.linkedId
        return build_response(primary_id, store.find_cluster([primary_id]))

    return None


def process_contact(
    store: ContactStore,
    raw_email: Optional[str],
    raw_phone: Optional[str],
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> ContactResponse:
    """Identify the cluster for a raw (email, phone) observation.

    Uniqueness conflicts and lock timeouts are retried from scratch up to
    `max_retries` times. Any other store error propagates unchanged.
    """
    attempts = max_retries + 1

    for attempt in range(1, attempts + 1):
        email = normalize_email(raw_email)
        phone = normalize_phone(raw_phone)
        if email is None and phone is None:
            raise IdentifyError(ErrorKind.INPUT, "email or phoneNumber required")

        try:
            with store.transaction():
                return resolve_contact(store, email, phone)
        except sqlite3.IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            logger.warning("identify.unique_conflict", attempt=attempt, email=email, phone=phone)
        except sqlite3.OperationalError as exc:
            if not is_lock_timeout(exc):
                raise
            logger.warning("identify.lock_timeout", attempt=attempt)
            continue

        try:
            existing = find_existing_cluster(store, email, phone)
        except sqlite3.OperationalError as exc:
            if not is_lock_timeout(exc):
                raise
            logger.warning("identify.lock_timeout", attempt=attempt, stage="conflict_lookup")
            continue

        if existing is not None:
            logger.info("identify.conflict_resolved", primary_id=existing.primaryContactId)
            return existing

    logger.error("identify.retries_exhausted", attempts=attempts)
    raise IdentifyError(ErrorKind.PERSISTENCE_CONFLICT, "Failed to resolve contact conflict")
