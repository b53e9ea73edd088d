"""Durable, versioned plugin registry.

Plugin versions are immutable rows in ``plugin_records``; publishing an update
inserts the next version of the family ``(owner_context, base_name)``.
Visibility is driven by ``plugin_enablements``: a grant either covers the
whole family (and follows its newest version) or pins one version.

Mutations of one family are serialized by a per-family ``asyncio.Lock`` and
each one commits in a single transaction, so readers never observe a partial
record. The unique constraint on the version column remains the last line of
defence when several processes share a database: a losing writer gets
``ConflictError`` instead of overwriting.
"""

import asyncio
import copy
import time
import weakref
from collections.abc import Iterable
from datetime import UTC, datetime

import httpx
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth.context import Context, ContextType
from ..core.config import Settings
from ..core.exceptions import ConflictError, ForbiddenError, InvalidArgumentsError, NotFoundError
from ..core.logging import LoggerMixin
from ..models.base import as_utc
from ..models.plugin_registry import FOLLOW_DEFAULT_VERSION, PluginEnablement, PluginFamily, PluginRecord
from ..schemas.plugin import (
    EnablementStatus,
    PluginMetadata,
    PluginRegisterRequest,
    PluginUpdateRequest,
)
from .fqn import format_fqn, parse_fqn, validate_base_name
from .schema_validation import check_schema

FamilyKey = tuple[str, int, str]


def _family_key(context: Context, base_name: str) -> FamilyKey:
    return (context.type.value, context.id, base_name)


def _family_filter(context: Context, base_name: str):
    return and_(
        PluginRecord.context_type == context.type.value,
        PluginRecord.context_id == context.id,
        PluginRecord.base_name == base_name,
    )


def _family_row_filter(context: Context, base_name: str):
    return and_(
        PluginFamily.context_type == context.type.value,
        PluginFamily.context_id == context.id,
        PluginFamily.base_name == base_name,
    )


def _grant_family_filter(context: Context, base_name: str):
    return and_(
        PluginEnablement.owner_type == context.type.value,
        PluginEnablement.owner_context_id == context.id,
        PluginEnablement.base_name == base_name,
    )


def _to_metadata(record: PluginRecord) -> PluginMetadata:
    return PluginMetadata(
        plugin_id=record.id,
        context_type=ContextType(record.context_type),
        context_id=record.context_id,
        base_name=record.base_name,
        version=record.version,
        fqn=record.fqn,
        description=record.description,
        input_schema=copy.deepcopy(record.input_schema),
        output_schema=copy.deepcopy(record.output_schema),
        endpoint_url=record.endpoint_url,
        owner_id=record.owner_id,
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def _to_status(grant: PluginEnablement) -> EnablementStatus:
    return EnablementStatus(
        subject_context_type=ContextType(grant.subject_type),
        subject_context_id=grant.subject_id,
        owner_context_type=ContextType(grant.owner_type),
        owner_context_id=grant.owner_context_id,
        base_name=grant.base_name,
        version=grant.pinned_version or None,
        enabled=grant.enabled,
        added_by=grant.added_by,
        consent_at=as_utc(grant.consent_at),
    )


class PluginRegistry(LoggerMixin):
    """Registry of externally hosted tools, partitioned by owner context."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self._session_factory = session_factory
        self._allow_insecure_endpoints = settings.allow_insecure_endpoints
        # Entries vanish once no task holds or waits on the lock
        self._family_locks: weakref.WeakValueDictionary[FamilyKey, asyncio.Lock] = weakref.WeakValueDictionary()
        # FQN -> (metadata, expiry). Unregistration evicts locally; the TTL bounds
        # staleness when other processes share the database.
        self._fqn_cache: dict[str, tuple[PluginMetadata, float]] = {}
        self._fqn_cache_ttl = settings.fqn_cache_ttl_seconds
        self._generation = 0

    def _family_lock(self, context: Context, base_name: str) -> asyncio.Lock:
        key = _family_key(context, base_name)
        lock = self._family_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._family_locks[key] = lock
        return lock

    @staticmethod
    async def _claim_version(session: AsyncSession, owner: Context, base_name: str) -> int:
        """Allocate the family's next version number and advance its high-water mark.

        The mark survives unregistration, so numbers are never handed out twice.
        """
        family = await session.scalar(
            select(PluginFamily).where(_family_row_filter(owner, base_name)).with_for_update()
        )
        if family is None:
            family = PluginFamily(
                context_type=owner.type.value,
                context_id=owner.id,
                base_name=base_name,
                latest_version=0,
            )
            session.add(family)
        family.latest_version += 1
        return family.latest_version

    def _validate_endpoint_url(self, endpoint_url: str) -> str:
        try:
            url = httpx.URL(endpoint_url)
        except (httpx.InvalidURL, TypeError):
            raise InvalidArgumentsError("endpoint_url is not a valid URL") from None
        allowed = {"https", "http"} if self._allow_insecure_endpoints else {"https"}
        if url.scheme not in allowed or not url.host:
            raise InvalidArgumentsError(
                "endpoint_url must be an absolute https URL",
                details={"endpoint_url": endpoint_url},
            )
        return endpoint_url

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def register(self, owner: Context, request: PluginRegisterRequest) -> PluginMetadata:
        """Register a new plugin family and enable it for its owner.

        A fresh family starts at version 1. A family whose versions were all
        unregistered continues after the highest version it ever issued.

        Raises:
            ConflictError: if the owner already has a plugin with this base name.
            InvalidSchemaError: if either schema is rejected.
            InvalidArgumentsError: if the base name or endpoint URL is unusable.

        """
        validate_base_name(request.base_name)
        self._validate_endpoint_url(request.endpoint_url)
        check_schema(request.input_schema, field="input_schema", require_object_type=True)
        if request.output_schema is not None:
            check_schema(request.output_schema, field="output_schema")

        async with self._family_lock(owner, request.base_name):
            try:
                async with self._session_factory() as session, session.begin():
                    existing = await session.scalar(
                        select(func.count()).select_from(PluginRecord).where(_family_filter(owner, request.base_name))
                    )
                    if existing:
                        raise ConflictError(
                            f"Plugin '{request.base_name}' is already registered for {owner}",
                            details={"base_name": request.base_name},
                        )
                    version = await self._claim_version(session, owner, request.base_name)
                    record = PluginRecord(
                        context_type=owner.type.value,
                        context_id=owner.id,
                        base_name=request.base_name,
                        version=version,
                        fqn=format_fqn(owner, request.base_name, version),
                        description=request.description,
                        input_schema=request.input_schema,
                        output_schema=request.output_schema,
                        endpoint_url=request.endpoint_url,
                        owner_id=request.owner_id,
                    )
                    session.add(record)
                    session.add(
                        PluginEnablement(
                            subject_type=owner.type.value,
                            subject_id=owner.id,
                            owner_type=owner.type.value,
                            owner_context_id=owner.id,
                            base_name=request.base_name,
                            pinned_version=FOLLOW_DEFAULT_VERSION,
                            enabled=True,
                            added_by=owner.key,
                        )
                    )
            except IntegrityError:
                raise ConflictError(
                    f"Plugin '{request.base_name}' is already registered for {owner}",
                    details={"base_name": request.base_name},
                ) from None

        metadata = _to_metadata(record)
        self.logger.info("Registered plugin", extra={"fqn": metadata.fqn, "plugin_id": metadata.plugin_id})
        return metadata

    async def update(self, plugin_id: str, owner: Context, request: PluginUpdateRequest) -> PluginMetadata:
        """Publish the next version of the family ``plugin_id`` belongs to.

        Unspecified fields are carried over from the family's newest version.
        Older versions are left untouched and stay resolvable by FQN.

        Raises:
            NotFoundError: if ``plugin_id`` is unknown.
            ForbiddenError: if ``owner`` does not own the plugin.
            ConflictError: if ``expected_version`` is stale or another writer
                claimed the version first.

        """
        current = await self.get(plugin_id)
        if current.owner_context != owner:
            raise ForbiddenError("Only the owning context can update a plugin")

        if request.endpoint_url is not None:
            self._validate_endpoint_url(request.endpoint_url)
        if request.input_schema is not None:
            check_schema(request.input_schema, field="input_schema", require_object_type=True)
        if request.output_schema is not None:
            check_schema(request.output_schema, field="output_schema")

        base_name = current.base_name
        async with self._family_lock(owner, base_name):
            try:
                async with self._session_factory() as session, session.begin():
                    latest = await session.scalar(
                        select(PluginRecord)
                        .where(_family_filter(owner, base_name))
                        .order_by(PluginRecord.version.desc())
                        .limit(1)
                    )
                    if latest is None:
                        raise NotFoundError(f"Plugin '{plugin_id}' not found", details={"plugin_id": plugin_id})
                    if request.expected_version is not None and request.expected_version != latest.version:
                        raise ConflictError(
                            f"Plugin '{base_name}' is at version {latest.version}, expected {request.expected_version}",
                            details={"current_version": latest.version, "expected_version": request.expected_version},
                        )

                    version = await self._claim_version(session, owner, base_name)
                    if request.clears_output_schema:
                        output_schema = None
                    elif request.output_schema is not None:
                        output_schema = request.output_schema
                    else:
                        output_schema = latest.output_schema
                    fields_set = request.model_fields_set
                    record = PluginRecord(
                        context_type=owner.type.value,
                        context_id=owner.id,
                        base_name=base_name,
                        version=version,
                        fqn=format_fqn(owner, base_name, version),
                        description=request.description if "description" in fields_set else latest.description,
                        input_schema=request.input_schema if request.input_schema is not None else latest.input_schema,
                        output_schema=output_schema,
                        endpoint_url=request.endpoint_url or latest.endpoint_url,
                        owner_id=latest.owner_id,
                    )
                    session.add(record)
            except IntegrityError:
                raise ConflictError(
                    f"Another writer published a new version of '{base_name}'",
                    details={"base_name": base_name},
                ) from None

        metadata = _to_metadata(record)
        self.logger.info(
            "Published plugin version",
            extra={"fqn": metadata.fqn, "plugin_id": metadata.plugin_id, "previous_plugin_id": plugin_id},
        )
        return metadata

    async def set_enablement(
        self,
        acting: Context,
        subject: Context,
        target: PluginMetadata,
        enabled: bool,
        *,
        pin_version: bool = False,
        is_admin: bool = False,
    ) -> EnablementStatus:
        """Upsert the grant of ``target`` to ``subject``.

        Allowed for the owner of the target, for administrators, and for a
        context managing its own grants (``acting == subject``).
        """
        owner = target.owner_context
        if acting != owner and acting != subject and not is_admin:
            raise ForbiddenError("Only the owner, an administrator or the subject itself can change enablement")

        pinned = target.version if pin_version else FOLLOW_DEFAULT_VERSION
        async with self._family_lock(owner, target.base_name):
            try:
                async with self._session_factory() as session, session.begin():
                    exists = await session.scalar(
                        select(func.count())
                        .select_from(PluginRecord)
                        .where(PluginRecord.id == target.plugin_id)
                    )
                    if not exists:
                        raise NotFoundError(
                            f"Plugin '{target.plugin_id}' not found",
                            details={"plugin_id": target.plugin_id},
                        )
                    grant = await session.scalar(
                        select(PluginEnablement).where(
                            PluginEnablement.subject_type == subject.type.value,
                            PluginEnablement.subject_id == subject.id,
                            _grant_family_filter(owner, target.base_name),
                            PluginEnablement.pinned_version == pinned,
                        )
                    )
                    if grant is None:
                        grant = PluginEnablement(
                            subject_type=subject.type.value,
                            subject_id=subject.id,
                            owner_type=owner.type.value,
                            owner_context_id=owner.id,
                            base_name=target.base_name,
                            pinned_version=pinned,
                        )
                        session.add(grant)
                    grant.enabled = enabled
                    grant.added_by = acting.key
                    grant.consent_at = datetime.now(UTC)
            except IntegrityError:
                raise ConflictError("Concurrent enablement change, retry the request") from None

        self.logger.info(
            "Enablement updated",
            extra={"subject": subject.key, "fqn": target.fqn, "pinned": bool(pinned), "enabled": enabled},
        )
        return _to_status(grant)

    async def unregister(self, plugin_id: str, acting: Context, *, is_admin: bool = False) -> PluginMetadata:
        """Delete one plugin version along with the grants that reference it.

        Grants pinned to the version are removed; once the family has no
        versions left its family-wide grants go too.
        """
        target = await self.get(plugin_id)
        owner = target.owner_context
        if acting != owner and not is_admin:
            raise ForbiddenError("Only the owning context or an administrator can unregister a plugin")

        async with self._family_lock(owner, target.base_name):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(delete(PluginRecord).where(PluginRecord.id == plugin_id))
                if result.rowcount == 0:
                    raise NotFoundError(f"Plugin '{plugin_id}' not found", details={"plugin_id": plugin_id})
                await session.execute(
                    delete(PluginEnablement).where(
                        _grant_family_filter(owner, target.base_name),
                        PluginEnablement.pinned_version == target.version,
                    )
                )
                remaining = await session.scalar(
                    select(func.count()).select_from(PluginRecord).where(_family_filter(owner, target.base_name))
                )
                if not remaining:
                    await session.execute(delete(PluginEnablement).where(_grant_family_filter(owner, target.base_name)))
            # Invalidate after commit; resolvers that raced the delete skip caching
            self._generation += 1
            self._fqn_cache.pop(target.fqn, None)

        self.logger.info("Unregistered plugin", extra={"fqn": target.fqn, "plugin_id": plugin_id})
        return target

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, plugin_id: str) -> PluginMetadata:
        """Return the metadata for ``plugin_id`` or raise ``NotFoundError``."""
        async with self._session_factory() as session:
            record = await session.get(PluginRecord, plugin_id)
        if record is None:
            raise NotFoundError(f"Plugin '{plugin_id}' not found", details={"plugin_id": plugin_id})
        return _to_metadata(record)

    async def get_for_caller(self, plugin_id: str, caller: Context, *, is_admin: bool = False) -> PluginMetadata:
        """Return ``plugin_id`` if ``caller`` owns it, holds an enabled grant for it, or is an admin.

        Plugins the caller may not see are reported as ``NotFoundError``.
        """
        metadata = await self.get(plugin_id)
        if is_admin or metadata.owner_context == caller or await self.is_enabled(caller, metadata):
            return metadata
        raise NotFoundError(f"Plugin '{plugin_id}' not found", details={"plugin_id": plugin_id})

    async def resolve(self, fqn: str) -> PluginMetadata:
        """Look a plugin version up by FQN.

        Raises:
            MalformedFqnError: before any lookup, if ``fqn`` breaks the grammar.
            NotFoundError: if no such version exists.

        """
        parse_fqn(fqn)
        cached = self._fqn_cache.get(fqn)
        if cached is not None:
            metadata, expires_at = cached
            if time.monotonic() < expires_at:
                return metadata
            del self._fqn_cache[fqn]

        generation = self._generation
        async with self._session_factory() as session:
            record = await session.scalar(select(PluginRecord).where(PluginRecord.fqn == fqn))
        if record is None:
            raise NotFoundError(f"Tool '{fqn}' not found", details={"fqn": fqn})
        metadata = _to_metadata(record)
        if self._fqn_cache_ttl > 0 and generation == self._generation:
            self._fqn_cache[fqn] = (metadata, time.monotonic() + self._fqn_cache_ttl)
        return metadata

    async def resolve_target(self, plugin_id: str | None = None, fqn: str | None = None) -> PluginMetadata:
        """Resolve a management target given either a plugin id or an FQN."""
        if fqn is not None:
            return await self.resolve(fqn)
        if plugin_id is not None:
            return await self.get(plugin_id)
        raise InvalidArgumentsError("Exactly one of plugin_id or fqn is required")

    async def is_enabled(self, subject: Context, metadata: PluginMetadata) -> bool:
        """Whether ``subject`` holds an enabled grant for this exact version.

        A grant pinned to the version wins over the family-wide grant.
        """
        async with self._session_factory() as session:
            grants = (
                await session.scalars(
                    select(PluginEnablement).where(
                        PluginEnablement.subject_type == subject.type.value,
                        PluginEnablement.subject_id == subject.id,
                        _grant_family_filter(metadata.owner_context, metadata.base_name),
                        PluginEnablement.pinned_version.in_([FOLLOW_DEFAULT_VERSION, metadata.version]),
                    )
                )
            ).all()
        by_version = {grant.pinned_version: grant.enabled for grant in grants}
        if metadata.version in by_version:
            return by_version[metadata.version]
        return by_version.get(FOLLOW_DEFAULT_VERSION, False)

    async def list_for_context(self, caller: Context) -> list[PluginMetadata]:
        """Plugins visible to ``caller``, sorted by FQN.

        A family-wide grant contributes the family's newest version; a pinned
        grant contributes its own version. A version explicitly disabled for
        the caller is never listed.
        """
        async with self._session_factory() as session:
            grants = (
                await session.scalars(
                    select(PluginEnablement).where(
                        PluginEnablement.subject_type == caller.type.value,
                        PluginEnablement.subject_id == caller.id,
                    )
                )
            ).all()
            if not grants:
                return []
            families = {(g.owner_type, g.owner_context_id, g.base_name) for g in grants}
            records = (await session.scalars(select(PluginRecord).where(self._families_clause(families)))).all()

        by_family: dict[FamilyKey, dict[int, PluginRecord]] = {}
        for record in records:
            by_family.setdefault((record.context_type, record.context_id, record.base_name), {})[record.version] = record

        visible: dict[str, PluginMetadata] = {}
        for family, versions in by_family.items():
            family_grants = {
                g.pinned_version: g.enabled for g in grants if (g.owner_type, g.owner_context_id, g.base_name) == family
            }
            wanted = {v for v, enabled in family_grants.items() if enabled and v != FOLLOW_DEFAULT_VERSION}
            if family_grants.get(FOLLOW_DEFAULT_VERSION):
                newest = max(versions)
                if family_grants.get(newest, True):
                    wanted.add(newest)
            for version in wanted:
                record = versions.get(version)
                if record is not None:
                    visible[record.fqn] = _to_metadata(record)
        return [visible[fqn] for fqn in sorted(visible)]

    async def list_owned(self, owner: Context) -> list[PluginMetadata]:
        """Every version owned by ``owner``, ordered by base name then version."""
        async with self._session_factory() as session:
            records = (
                await session.scalars(
                    select(PluginRecord)
                    .where(PluginRecord.context_type == owner.type.value, PluginRecord.context_id == owner.id)
                    .order_by(PluginRecord.base_name, PluginRecord.version)
                )
            ).all()
        return [_to_metadata(record) for record in records]

    @staticmethod
    def _families_clause(families: Iterable[FamilyKey]):
        return or_(
            *(
                and_(
                    PluginRecord.context_type == context_type,
                    PluginRecord.context_id == context_id,
                    PluginRecord.base_name == base_name,
                )
                for context_type, context_id, base_name in families
            )
        )
