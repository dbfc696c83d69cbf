"""Cross-provider identity resolution.

Maps ``(source, external_id)`` pairs onto canonical person ids and back. The
``(source, external_id)`` key is unique in the store, which makes
:meth:`IdentityResolver.ensure_person` safe when several callers race to create the same
person: only one insert of the identity row can win and every caller re-reads the winner.
"""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.errors import ConflictError, InvalidInputError, NotFoundError
from sparsetree.domain.model import (
    PROVIDER_SOURCES,
    ExternalIdentity,
    PersonAttributes,
    is_canonical_id,
    new_canonical_id,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sparsetree.domain.cache import CacheStats
    from sparsetree.domain.ports.unit_of_work import GraphRepositories, UnitOfWorkFactory

log = getLogger(__name__)


def _identity_key(source: str, external_id: str) -> str:
    return f"identity:{source}:{external_id}"


def _person_key(person_id: str) -> str:
    return f"person:{person_id}:external-ids"


class IdentityResolver:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        caches: CacheRegistry | None = None,
        default_source: str = PROVIDER_SOURCES[0],
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._caches = caches or CacheRegistry()
        self.default_source = default_source

    def resolve(self, external_id: str, source: str) -> str | None:
        """Exact lookup of the canonical id behind ``(source, external_id)``."""

        key = _identity_key(source, external_id)
        cached = self._caches.person.get(key)
        if isinstance(cached, str):
            return cached
        with self._uow_factory() as uow:
            person_id = uow.repositories.identities.resolve(source, external_id)
        if person_id is not None:
            self._caches.person.set(key, person_id)
        return person_id

    def batch_resolve(self, external_ids: Sequence[str], source: str) -> dict[str, str]:
        resolved: dict[str, str] = {}
        missing: list[str] = []
        for external_id in external_ids:
            cached = self._caches.person.get(_identity_key(source, external_id))
            if isinstance(cached, str):
                resolved[external_id] = cached
            else:
                missing.append(external_id)
        if missing:
            with self._uow_factory() as uow:
                found = uow.repositories.identities.resolve_many(source, missing)
            for external_id, person_id in found.items():
                self._caches.person.set(_identity_key(source, external_id), person_id)
            resolved.update(found)
        return resolved

    def get_external_ids(self, person_id: str) -> dict[str, str]:
        key = _person_key(person_id)
        cached = self._caches.person.get(key)
        if isinstance(cached, dict):
            return dict(cached)
        with self._uow_factory() as uow:
            identities = uow.repositories.identities.for_person(person_id)
        mapping = {identity.source: identity.external_id for identity in identities}
        self._caches.person.set(key, dict(mapping))
        return mapping

    def preferred_external_id(
        self, person_id: str, preferred_source: str | None = None
    ) -> tuple[str, str] | None:
        """Pick the external id to show or fetch for a person, preferring the default source."""

        external_ids = self.get_external_ids(person_id)
        for source in (preferred_source or self.default_source, *PROVIDER_SOURCES):
            if source in external_ids:
                return source, external_ids[source]
        if external_ids:
            source = next(iter(external_ids))
            return source, external_ids[source]
        return None

    def ensure_person(
        self,
        external_id: str,
        source: str,
        attributes: PersonAttributes | None = None,
    ) -> str:
        """Return the canonical id for ``(source, external_id)``, creating the person if new."""

        if not external_id or not source:
            raise InvalidInputError("ensure_person requires both an external id and a source")
        existing = self.resolve(external_id, source)
        if existing is not None:
            return existing

        candidate = new_canonical_id()
        with self._uow_factory() as uow:
            repos = uow.repositories
            repos.persons.create(candidate, attributes or PersonAttributes())
            repos.identities.insert_if_absent(
                ExternalIdentity(
                    source=source,
                    external_id=external_id,
                    person_id=candidate,
                    last_seen_at=datetime.now(UTC),
                )
            )
            winner = repos.identities.resolve(source, external_id)
            if winner is None:
                raise ConflictError(
                    f"Identity {source}:{external_id} vanished while being created"
                )
            if winner != candidate:
                # Lost the race: another caller created this identity first.
                repos.persons.delete(candidate)
            else:
                repos.persons.index_text(candidate)
            uow.commit()

        if winner == candidate:
            log.debug("Created person %s for %s:%s", candidate, source, external_id)
        self._caches.person.set(_identity_key(source, external_id), winner)
        self._caches.person.invalidate(_person_key(winner))
        return winner

    def resolve_id(self, identifier: str, source: str | None = None) -> str | None:
        """Accept a canonical id or an external id and return the canonical id.

        Identifiers already shaped like canonical ids pass through unchanged without a
        store lookup; anything else is resolved as an external id.
        """

        identifier = identifier.strip()
        if not identifier:
            return None
        if is_canonical_id(identifier):
            return identifier
        sources = (source,) if source else PROVIDER_SOURCES
        for candidate_source in sources:
            person_id = self.resolve(identifier, candidate_source)
            if person_id is not None:
                return person_id
        return None

    def require_id(self, identifier: str, source: str | None = None) -> str:
        person_id = self.resolve_id(identifier, source)
        if person_id is None:
            raise NotFoundError(f"Unknown person identifier: {identifier}")
        return person_id

    def register_external_id(
        self,
        person_id: str,
        source: str,
        external_id: str,
        *,
        url: str | None = None,
        confidence: float = 1.0,
    ) -> None:
        """Link an additional provider identity to an existing person."""

        with self._uow_factory() as uow:
            repos = uow.repositories
            if repos.persons.get(person_id) is None:
                raise NotFoundError(f"Unknown person: {person_id}")
            owner = repos.identities.resolve(source, external_id)
            if owner is not None and owner != person_id:
                raise ConflictError(
                    f"{source}:{external_id} already belongs to person {owner}"
                )
            self._forget_person_identities(repos, person_id)
            repos.identities.replace_for_person(
                ExternalIdentity(
                    source=source,
                    external_id=external_id,
                    person_id=person_id,
                    url=url,
                    confidence=confidence,
                    last_seen_at=datetime.now(UTC),
                )
            )
            graphs = repos.databases.graphs_of(person_id)
            uow.commit()
        self._caches.invalidate_person(person_id, graphs=graphs)
        self._caches.person.set(_identity_key(source, external_id), person_id)
        log.info(
            "Linked %s:%s to person %s (confidence %.2f)",
            source,
            external_id,
            person_id,
            confidence,
        )

    def remove_external_id(self, person_id: str, source: str) -> bool:
        with self._uow_factory() as uow:
            self._forget_person_identities(uow.repositories, person_id)
            removed = uow.repositories.identities.remove(person_id, source)
            graphs = uow.repositories.databases.graphs_of(person_id)
            uow.commit()
        self._caches.invalidate_person(person_id, graphs=graphs)
        return removed

    def clear_cache(self) -> None:
        self._caches.person.clear()

    def cache_stats(self) -> CacheStats:
        return self._caches.person.stats()

    def _forget_person_identities(self, repos: GraphRepositories, person_id: str) -> None:
        for identity in repos.identities.for_person(person_id):
            self._caches.person.invalidate(_identity_key(identity.source, identity.external_id))
