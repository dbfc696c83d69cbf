"""Ports for fetching and parsing provider records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sparsetree.domain.model import RawPayload, TransformedRecord


@runtime_checkable
class PersonRecordFetcher(Protocol):
    """Callable port returning the raw provider record for one person.

    Implementations apply their own retry and backoff and raise
    :class:`~sparsetree.domain.errors.UpstreamFetchError` when the record cannot be fetched.
    """

    def __call__(self, external_id: str, source: str) -> RawPayload: ...


@runtime_checkable
class PayloadTransformer(Protocol):
    """Pure, provider-specific parser from raw payload to normalized facts."""

    def __call__(self, payload: RawPayload) -> TransformedRecord: ...


__all__ = ["PayloadTransformer", "PersonRecordFetcher"]
