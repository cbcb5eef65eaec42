"""Resource descriptors and the typed CRUD events sent to the data layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator


class ResourceDescriptor(BaseModel):
    """A logical entity and the URL prefix its CRUD routes are mounted under."""

    name: str = Field("", max_length=255)
    path: str = Field("", max_length=2048)

    @field_validator("name", "path", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        if not v:
            return v
        v = "/" + v.strip("/")
        return v

    @property
    def is_complete(self) -> bool:
        return bool(self.name) and bool(self.path)


class CrudVerb(str, enum.Enum):
    """The closed set of data-layer topics."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class CrudEvent:
    """Base for the four event kinds. ``args`` is the positional payload on the bus."""

    verb: ClassVar[CrudVerb]
    name: str

    @property
    def args(self) -> tuple[Any, ...]:
        raise NotImplementedError


@dataclass(frozen=True)
class Create(CrudEvent):
    verb: ClassVar[CrudVerb] = CrudVerb.CREATE
    body: Any = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.name, self.body)


@dataclass(frozen=True)
class Read(CrudEvent):
    """Read by query document, or by id when ``query`` is a string."""

    verb: ClassVar[CrudVerb] = CrudVerb.READ
    query: dict[str, Any] | str | None = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.name, {} if self.query is None else self.query)


@dataclass(frozen=True)
class Update(CrudEvent):
    verb: ClassVar[CrudVerb] = CrudVerb.UPDATE
    id: str = ""
    body: Any = None

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.name, self.id, self.body)


@dataclass(frozen=True)
class Delete(CrudEvent):
    verb: ClassVar[CrudVerb] = CrudVerb.DELETE
    id: str = ""

    @property
    def args(self) -> tuple[Any, ...]:
        return (self.name, self.id)
