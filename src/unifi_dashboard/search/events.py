"""Events emitted by the MAC search, one JSON line each on the wire."""

from typing import Literal, Union

from pydantic import BaseModel, computed_field


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    checked: int
    total: int

    @computed_field
    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return int(self.checked * 100 / self.total)


class FoundEvent(BaseModel):
    type: Literal["found"] = "found"
    site: str
    site_id: str
    device_name: str
    mac: str
    checked: int
    total: int


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    found: bool = False
    checked: int
    total: int
    timed_out: bool = False


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


SearchEvent = Union[ProgressEvent, FoundEvent, DoneEvent]
