"""
Helpers shared by route modules.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException

from collective.atproto import AtprotoError, AtUri, RepoAgent, RepoRecord


def compact(record: dict) -> dict:
    """Drop keys whose value is None so records stay lexicon-clean."""
    return {key: value for key, value in record.items() if value is not None}


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_uri(uri: str, what: str) -> AtUri:
    try:
        return AtUri.parse(uri)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {what} URI")


def owned_uri(uri: str, did: str, what: str) -> AtUri:
    """Parse an at-uri and check it lives in the caller's repo."""
    parsed = parse_uri(uri, what)
    if parsed.did != did:
        raise HTTPException(status_code=403, detail=f"Not authorized to modify this {what}")
    return parsed


def find_record(agent: RepoAgent, uri: AtUri) -> Optional[RepoRecord]:
    try:
        return agent.get_record(uri.did, uri.collection, uri.rkey)
    except AtprotoError as exc:
        if exc.status_code in (400, 404):
            return None
        raise


def require_record(agent: RepoAgent, uri: AtUri, what: str) -> RepoRecord:
    record = find_record(agent, uri)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{what.capitalize()} not found")
    return record
