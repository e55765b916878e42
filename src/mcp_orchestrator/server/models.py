"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

TransportName = Literal["process", "network", "invalid"]


class ApiOperation(BaseModel):
    name: str
    description: str = ""
    capabilities: list[str] = Field(default_factory=list)
    slow: bool = False


class ApiTarget(BaseModel):
    id: str
    name: str
    description: str = ""
    transport: TransportName
    operations: list[ApiOperation] = Field(default_factory=list)


class InvokeRequest(BaseModel):
    target_id: str = Field(..., min_length=1)
    operation: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class InvokeResponse(BaseModel):
    target_id: str
    operation: str
    text: str
    content: list[dict[str, Any]] = Field(default_factory=list)
    structured: dict[str, Any] | None = None


class WorkflowRequest(BaseModel):
    request: str = Field(..., min_length=1)


class PlanResponse(BaseModel):
    request: str
    planned: bool
    steps: list[dict[str, Any]] = Field(default_factory=list)


class RunResponse(BaseModel):
    request: str
    success: bool
    summary: str
    steps: list[dict[str, Any]] = Field(default_factory=list)


class ApiError(BaseModel):
    kind: str
    message: str
    attempts: list[str] = Field(default_factory=list)
