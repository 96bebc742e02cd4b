"""
Domain types produced by the query engine.

These are derived per query and never cached; only raw document text is.
"""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ChannelInfo:
    """A channel resolved from the document."""
    id: str
    display_name: str
    icon_url: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "icon": self.icon_url,
        }


@dataclass(frozen=True)
class ProgramEntry:
    """One scheduled program on the target date."""
    start: str       # "HH:MM"
    end: str         # "HH:MM" or ""
    title: str
    description: str = ""

    def to_dict(self) -> dict:
        """Convert to the DIYP epg_data item shape."""
        return {
            "start": self.start,
            "end": self.end,
            "title": self.title,
            "desc": self.description,
        }


@dataclass
class QueryResult:
    """
    Outcome of a channel+date query.

    A result with no programs is "empty" even when the channel resolved; the
    channel is kept so callers can report what was found.
    """
    date: str
    channel: Optional[ChannelInfo] = None
    programs: List[ProgramEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.programs

    @classmethod
    def empty(cls, date: str, channel: Optional[ChannelInfo] = None) -> "QueryResult":
        return cls(date=date, channel=channel, programs=[])
