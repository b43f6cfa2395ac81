"""Views of live runtime state as reported by the cmux adapter."""

from __future__ import annotations

from pydantic import BaseModel, Field

from cmuxlink.models.session import first_non_empty


class Capabilities(BaseModel):
    methods: set[str] = Field(default_factory=set)

    def missing(self, required: list[str]) -> list[str]:
        return [m for m in required if m not in self.methods]


class RuntimeWorkspace(BaseModel):
    id: str = ""
    ref: str = ""
    index: int = 0
    title: str = ""
    selected: bool = False


class Pane(BaseModel):
    id: str = ""
    ref: str = ""
    index: int = 0
    focused: bool = False

    @property
    def handle(self) -> str:
        return first_non_empty(self.id, self.ref)


class Surface(BaseModel):
    id: str = ""
    ref: str = ""
    index: int = 0
    title: str = ""
    type: str = ""
    selected: bool = False
    pane_id: str = ""

    @property
    def handle(self) -> str:
        return first_non_empty(self.id, self.ref)

    @property
    def is_browser(self) -> bool:
        return self.type.strip().lower() == "browser"
