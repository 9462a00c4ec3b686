"""Credential broker configuration models."""

from pydantic import BaseModel, Field


class BrokerSettings(BaseModel):
    safety_margin_seconds: int = Field(default=60, ge=0)
    exchange_timeout_seconds: float = Field(default=30.0, gt=0)
