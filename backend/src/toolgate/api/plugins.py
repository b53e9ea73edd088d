"""Plugin management API.

Register, update, list, inspect, enable and unregister externally hosted
tools. Every route acts on behalf of the context named in the context headers.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query

from ..auth.api_key import Principal
from ..auth.context import Context, resolve_context
from ..core.response import ToolgateResponse
from ..runtime import Runtime
from ..schemas.envelope import ErrorResponse, SuccessResponse
from ..schemas.plugin import (
    EnablementRequest,
    EnablementStatus,
    PluginMetadata,
    PluginRegistration,
    PluginRegisterRequest,
    PluginUpdateRequest,
)
from .dependencies import enforce_rate_limit, get_required_context, get_runtime

router = APIRouter(
    prefix="/tools",
    tags=["tools"],
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


@router.post(
    "",
    status_code=201,
    response_model=SuccessResponse[PluginRegistration],
    summary="Register a plugin",
    description="Register a new plugin family, starting at version 1.",
)
async def register_plugin(
    body: PluginRegisterRequest,
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    metadata = await runtime.registry.register(context, body)
    return ToolgateResponse.created(PluginRegistration.from_metadata(metadata))


@router.put("/{plugin_id}", response_model=SuccessResponse[PluginRegistration], summary="Publish a new version")
async def update_plugin(
    plugin_id: str,
    body: PluginUpdateRequest,
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Publish the next version of a family; omitted fields carry over from the newest version."""
    metadata = await runtime.registry.update(plugin_id, context, body)
    return ToolgateResponse.success(PluginRegistration.from_metadata(metadata))


@router.get("", response_model=SuccessResponse[list[PluginMetadata]], summary="List plugins")
async def list_plugins(
    scope: Literal["visible", "owned"] = Query("visible", description="visible: enabled for the caller; owned: every version the caller owns"),
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    if scope == "owned":
        plugins = await runtime.registry.list_owned(context)
    else:
        plugins = await runtime.registry.list_for_context(context)
    return ToolgateResponse.success(plugins)


@router.post(
    "/enablement",
    response_model=SuccessResponse[EnablementStatus],
    summary="Enable or disable a plugin for a context",
)
async def set_enablement(
    body: EnablementRequest,
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Upsert a grant. The subject defaults to the calling context."""
    subject = resolve_context(body.subject_context_type, body.subject_context_id) or context
    target = await runtime.registry.resolve_target(plugin_id=body.plugin_id, fqn=body.fqn)
    status = await runtime.registry.set_enablement(
        context,
        subject,
        target,
        body.enabled,
        pin_version=body.pin_version,
        is_admin=principal.is_admin,
    )
    return ToolgateResponse.success(status)


@router.get("/{plugin_id}", response_model=SuccessResponse[PluginMetadata], summary="Get plugin metadata")
async def get_plugin(
    plugin_id: str,
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Metadata of a plugin the caller owns or has enabled; others read as not found."""
    metadata = await runtime.registry.get_for_caller(plugin_id, context, is_admin=principal.is_admin)
    return ToolgateResponse.success(metadata)


@router.delete("/{plugin_id}", status_code=204, summary="Unregister a plugin version")
async def unregister_plugin(
    plugin_id: str,
    principal: Principal = Depends(enforce_rate_limit),
    context: Context = Depends(get_required_context),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.registry.unregister(plugin_id, context, is_admin=principal.is_admin)
    return ToolgateResponse.no_content()
