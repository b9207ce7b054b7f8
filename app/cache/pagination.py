"""
Reassembly of paginated responses.

A first page whose payload carries a continuation token is a *head*. A page
fetched with ``offset=<token>`` in its query is a *fragment*. Merging folds
each fragment into the head whose token it continues, then deletes it, so
the head ends up holding every record in fetch order.
"""
import logging
from typing import Dict
from urllib.parse import unquote

from .core import (
    CONTINUATION_PARAM,
    RECORDS_FIELD,
    Payload,
    continuation_token,
    fragment_token,
)
from .errors import MalformedPayload
from .store import SiteStore

logger = logging.getLogger("cache.pagination")


def merge_paginated_entries(site: SiteStore) -> int:
    """
    Fold every resolvable fragment of ``site`` into its head.

    Runs with the site lock held for the whole scan. Callers persist the
    site when the returned count is non-zero.

    Returns:
        Number of fragments merged and deleted.
    """
    merged = 0
    with site.lock:
        entries = site.items()

        fragments: Dict[str, str] = {}
        for identifier, _ in entries:
            token = fragment_token(identifier)
            if token is None:
                continue
            if token in fragments:
                logger.warning(
                    f"Duplicate fragment for token {token}: {unquote(identifier)} "
                    f"(keeping {unquote(fragments[token])})"
                )
                continue
            fragments[token] = identifier

        if not fragments:
            return 0

        for identifier, _ in entries:
            if fragment_token(identifier) is not None:
                continue
            merged += _fold_chain(site, identifier, fragments)

    if merged:
        logger.info(f"Merged {merged} paginated fragment(s) for site '{site.slug}'")
    return merged


def _fold_chain(site: SiteStore, head_id: str, fragments: Dict[str, str]) -> int:
    """Follow one head's token through consecutive fragments."""
    count = 0
    while True:
        head = site.get(head_id)
        token = continuation_token(head.payload) if head else None
        if token is None or token not in fragments:
            return count

        fragment_id = fragments[token]
        fragment = site.get(fragment_id)
        if fragment is None:
            return count

        try:
            payload = merge_payloads(head.payload, fragment.payload)
        except MalformedPayload as e:
            logger.warning(
                f"Skipping merge of {unquote(fragment_id)} into {unquote(head_id)}: {e}"
            )
            return count

        logger.info(f"Backfilling paginated data and deleting request: {unquote(fragment_id)}")
        site.put(head_id, payload, last_updated=head.last_updated)
        site.delete(fragment_id)
        del fragments[token]
        count += 1


def merge_payloads(head: Payload, fragment: Payload) -> Payload:
    """
    Append ``fragment``'s records to ``head``'s and adopt its token.

    Builds a new payload; neither argument is modified.

    Raises:
        MalformedPayload: If either side lacks a record collection.
    """
    head_records = head.get(RECORDS_FIELD)
    fragment_records = fragment.get(RECORDS_FIELD) if isinstance(fragment, dict) else None
    if not isinstance(head_records, list):
        raise MalformedPayload("head payload has no record collection")
    if not isinstance(fragment_records, list):
        raise MalformedPayload("fragment payload has no record collection")

    merged = dict(head)
    merged[RECORDS_FIELD] = head_records + fragment_records
    if CONTINUATION_PARAM in fragment:
        merged[CONTINUATION_PARAM] = fragment[CONTINUATION_PARAM]
    else:
        merged.pop(CONTINUATION_PARAM, None)
    return merged
