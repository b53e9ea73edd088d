"""Pydantic schemas for plugin metadata and the management API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..auth.context import Context, ContextType
from .mcp import ToolDescriptor


class PluginMetadata(BaseModel):
    """Immutable view of one plugin version."""

    model_config = ConfigDict(frozen=True)

    plugin_id: str
    context_type: ContextType
    context_id: int
    base_name: str
    version: int
    fqn: str
    description: str | None = None
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    endpoint_url: str
    owner_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def owner_context(self) -> Context:
        return Context(self.context_type, self.context_id)

    def to_descriptor(self) -> ToolDescriptor:
        """Tool descriptor exposed to protocol clients, named by FQN."""
        return ToolDescriptor(
            name=self.fqn,
            description=self.description or f"{self.base_name} (v{self.version})",
            input_schema=self.input_schema,
        )


class PluginRegisterRequest(BaseModel):
    """Request body for registering a new plugin family."""

    base_name: str = Field(..., min_length=1, max_length=64)
    description: str | None = Field(None, max_length=1024)
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    endpoint_url: str = Field(..., min_length=1, max_length=2048)
    owner_id: str | None = Field(None, max_length=128)


class PluginUpdateRequest(BaseModel):
    """Request body for publishing a new version.

    Omitted fields are carried over from the newest version. ``output_schema``
    set to null explicitly removes the output schema.
    """

    description: str | None = Field(None, max_length=1024)
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    endpoint_url: str | None = Field(None, min_length=1, max_length=2048)
    expected_version: int | None = Field(None, ge=1)

    @property
    def clears_output_schema(self) -> bool:
        return "output_schema" in self.model_fields_set and self.output_schema is None


class PluginRegistration(BaseModel):
    """Response for register and update."""

    plugin_id: str
    fqn: str
    version: int

    @classmethod
    def from_metadata(cls, metadata: PluginMetadata) -> "PluginRegistration":
        return cls(plugin_id=metadata.plugin_id, fqn=metadata.fqn, version=metadata.version)


class EnablementRequest(BaseModel):
    """Request body for toggling a plugin for a subject context.

    The target is given by ``plugin_id`` or ``fqn``. Without ``pin_version``
    the grant covers the whole family and follows its newest version.
    """

    plugin_id: str | None = None
    fqn: str | None = None
    subject_context_type: str | None = None
    subject_context_id: int | str | None = None
    enabled: bool = True
    pin_version: bool = False

    @model_validator(mode="after")
    def _one_target(self) -> "EnablementRequest":
        if (self.plugin_id is None) == (self.fqn is None):
            raise ValueError("Exactly one of plugin_id or fqn is required")
        return self


class EnablementStatus(BaseModel):
    """State of one enablement record after an upsert."""

    subject_context_type: ContextType
    subject_context_id: int
    owner_context_type: ContextType
    owner_context_id: int
    base_name: str
    version: int | None = None
    enabled: bool
    added_by: str | None = None
    consent_at: datetime
