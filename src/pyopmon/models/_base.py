"""Base model and enum for pushed event payloads.

Payload models inherit from :class:`OpmonBaseModel` which provides:

* ``extra="allow"`` so domain fields the server adds (``videoUrl``,
  ``position``, ...) pass through untouched.
* A wrapping ``model_validator`` that keeps the original dict in a
  private attribute, exposed read-only as ``raw``.

Vocabulary enums inherit from :class:`OpmonEnum` which adds an ``UNKNOWN``
member and a ``_missing_`` hook that returns it for any unmapped string.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidatorFunctionWrapHandler, model_validator


class OpmonEnum(enum.StrEnum):
    """Base for string vocabularies received from the server.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> OpmonEnum:
        if hasattr(cls, "UNKNOWN"):
            unknown: OpmonEnum = cls.UNKNOWN  # type: ignore[attr-defined]
            return unknown
        return next(iter(cls))


class OpmonBaseModel(BaseModel):
    """Base for pushed payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    # Kept outside the field namespace: ``raw`` is a legal domain key.
    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="wrap")
    @classmethod
    def _stash_raw(cls, values: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        model = handler(values)
        if isinstance(values, dict) and isinstance(model, OpmonBaseModel):
            model._raw = dict(values)
        return model

    @property
    def raw(self) -> dict[str, Any]:
        """Original payload dict."""
        return self._raw
