"""Registry tables.

Three logical namespaces:
- ``plugin_records``: immutable plugin versions keyed by ``id`` (the plugin id).
- ``plugin_families``: the highest version ever issued per family, kept after
  its versions are unregistered so a version number is never issued twice.
- ``plugin_enablements``: per-subject-context grants, looked up by
  ``(subject_type, subject_id)``.
"""

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from .base import BaseModel, utcnow

# Enablement rows with this pinned version follow the family's newest version
FOLLOW_DEFAULT_VERSION = 0


class PluginRecord(BaseModel):
    """One version of a registered plugin.

    Rows are never updated in place: a new version is a new row. The unique
    constraint on ``(context_type, context_id, base_name, version)`` rejects a
    second writer racing for the same version number.
    """

    __tablename__ = "plugin_records"

    context_type = Column(String(8), nullable=False)
    context_id = Column(BigInteger, nullable=False)
    base_name = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False)
    fqn = Column(String(160), nullable=False, unique=True)

    description = Column(Text, nullable=True)
    input_schema = Column(JSON, nullable=False)
    output_schema = Column(JSON, nullable=True)
    endpoint_url = Column(String(2048), nullable=False)
    owner_id = Column(String(128), nullable=True)

    __table_args__ = (
        UniqueConstraint("context_type", "context_id", "base_name", "version", name="uq_plugin_family_version"),
        Index("ix_plugin_records_owner", "context_type", "context_id"),
    )

    def __repr__(self) -> str:
        return f"<PluginRecord(fqn={self.fqn}, id={self.id})>"


class PluginFamily(BaseModel):
    """Version high-water mark of one ``(context, base_name)`` family."""

    __tablename__ = "plugin_families"

    context_type = Column(String(8), nullable=False)
    context_id = Column(BigInteger, nullable=False)
    base_name = Column(String(64), nullable=False)
    latest_version = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("context_type", "context_id", "base_name", name="uq_plugin_family"),)

    def __repr__(self) -> str:
        return f"<PluginFamily({self.context_type}:{self.context_id}:{self.base_name}, latest={self.latest_version})>"


class PluginEnablement(BaseModel):
    """Grant of a plugin family (or one pinned version) to a subject context."""

    __tablename__ = "plugin_enablements"

    subject_type = Column(String(8), nullable=False)
    subject_id = Column(BigInteger, nullable=False)

    owner_type = Column(String(8), nullable=False)
    owner_context_id = Column(BigInteger, nullable=False)
    base_name = Column(String(64), nullable=False)
    pinned_version = Column(Integer, nullable=False, default=FOLLOW_DEFAULT_VERSION)

    enabled = Column(Boolean, nullable=False, default=True)
    added_by = Column(String(64), nullable=True)
    consent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "subject_type",
            "subject_id",
            "owner_type",
            "owner_context_id",
            "base_name",
            "pinned_version",
            name="uq_enablement_target",
        ),
        Index("ix_plugin_enablements_subject", "subject_type", "subject_id"),
        Index("ix_plugin_enablements_family", "owner_type", "owner_context_id", "base_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<PluginEnablement(subject={self.subject_type}:{self.subject_id}, "
            f"family={self.owner_type}:{self.owner_context_id}:{self.base_name}, "
            f"version={self.pinned_version}, enabled={self.enabled})>"
        )
