"""
Pydantic schemas for API response payloads.
"""
from typing import Optional

from pydantic import BaseModel

from .models import QueryResult


# ===== DIYP SCHEMAS =====

class ProgramItem(BaseModel):
    """One program in the DIYP epg_data list"""
    start: str
    end: str
    title: str
    desc: str = ""


class DiypResponse(BaseModel):
    """Successful channel+date query"""
    code: int = 200
    message: str = "请求成功"
    channel_id: str
    channel_name: str
    date: str
    url: str
    icon: str = ""
    epg_data: list[ProgramItem]

    @classmethod
    def from_result(cls, result: QueryResult, url: str) -> "DiypResponse":
        channel = result.channel
        return cls(
            channel_id=channel.id,
            channel_name=channel.display_name,
            date=result.date,
            url=url,
            icon=channel.icon_url,
            epg_data=[ProgramItem(**p.to_dict()) for p in result.programs],
        )


class NotFoundDebugInfo(BaseModel):
    """Original query, plus the channel when it resolved"""
    channel: str
    date: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None


class NotFoundResponse(BaseModel):
    """No programs matched the query"""
    code: int = 404
    message: str = "No programs found"
    debug_info: NotFoundDebugInfo

    @classmethod
    def from_result(cls, result: QueryResult, channel_query: str) -> "NotFoundResponse":
        debug = NotFoundDebugInfo(channel=channel_query, date=result.date)
        if result.channel is not None:
            debug.channel_id = result.channel.id
            debug.channel_name = result.channel.display_name
        return cls(debug_info=debug)


class ErrorResponse(BaseModel):
    """Caller or server error"""
    code: int
    message: str


# ===== STATUS SCHEMAS =====

class SourceStatusItem(BaseModel):
    """Last-update status of one source"""
    timestamp: str
    provenance: str
    error: Optional[str] = None
    fetchedAt: Optional[float] = None


class StatusResponse(BaseModel):
    """Service status for the usage page"""
    name: str
    version: str
    configured: bool
    sources: dict[str, Optional[SourceStatusItem]]
