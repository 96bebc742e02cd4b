"""
Channel resolution and program extraction over raw XMLTV text.

The document is never parsed into a tree. Block boundaries are located with
plain substring search and the small patterns below are only applied to the
extracted block, so work stays proportional to the matched region.
"""
import logging
import re
from typing import List, Optional

from .models import ChannelInfo, ProgramEntry, QueryResult

logger = logging.getLogger("epg.query")

CHANNEL_OPEN = "<channel"
CHANNEL_CLOSE = "</channel>"
PROGRAMME_OPEN = "<programme"
PROGRAMME_CLOSE = "</programme>"

# Applied within a single extracted block only
CHANNEL_ID_REGEX = re.compile(r'id="([^"]+)"')
CHANNEL_ICON_REGEX = re.compile(r'<icon src="([^"]+)"')
DISPLAY_NAME_REGEX = re.compile(r"<display-name[^>]*>([^<]+)</display-name>")
PROG_START_REGEX = re.compile(r'start="([^"]+)"')
PROG_STOP_REGEX = re.compile(r'stop="([^"]+)"')
PROG_TITLE_REGEX = re.compile(r"<title[^>]*>([\s\S]*?)</title>")
PROG_DESC_REGEX = re.compile(r"<desc[^>]*>([\s\S]*?)</desc>")
CDATA_REGEX = re.compile(r"<!\[CDATA\[([\s\S]*?)\]\]>", re.IGNORECASE)
NORMALIZE_REGEX = re.compile(r"[\s\-_]")

DEFAULT_PROGRAM_TITLE = "节目"


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a channel name for fuzzy comparison.

    Upper-cases and strips whitespace, hyphens and underscores, so
    "CCTV-1", "cctv 1" and "CCTV_1" all become "CCTV1".
    """
    if not name:
        return ""
    return NORMALIZE_REGEX.sub("", name.strip().upper())


def format_time(raw: Optional[str]) -> str:
    """Render an XMLTV timestamp (YYYYMMDDHHMMSS...) as HH:MM, no tz conversion."""
    if not raw or len(raw) < 12:
        return ""
    return f"{raw[8:10]}:{raw[10:12]}"


def clean_content(value: Optional[str]) -> str:
    """Strip CDATA wrappers and surrounding whitespace."""
    if not value:
        return ""
    return CDATA_REGEX.sub(r"\1", value).strip()


def _compact_date(date_str: str) -> str:
    return date_str.replace("-", "")


class QueryEngine:
    """
    Resolves a channel by name and extracts its programs for one date.

    Resolution is exact-first (case-insensitive, whitespace-trimmed display
    name), then a fuzzy scan over channel blocks in document order comparing
    normalized names. The first fuzzy hit wins; there is no scoring.
    """

    def resolve_and_extract(
        self,
        text: str,
        channel_query: str,
        date_query: str,
    ) -> QueryResult:
        """
        Run a full query against document text.

        Returns an empty QueryResult when the channel cannot be resolved. When
        the channel resolves but nothing airs on the date, the result is empty
        but still carries the channel.
        """
        channel = self.find_channel(text, channel_query)
        if channel is None:
            logger.debug(f"Channel not found: {channel_query!r}")
            return QueryResult.empty(date_query)

        programs = self.extract_programs(text, channel.id, date_query)
        return QueryResult(date=date_query, channel=channel, programs=programs)

    def find_channel(self, text: str, channel_query: str) -> Optional[ChannelInfo]:
        """Resolve a channel, exact phase first and fuzzy phase as fallback."""
        if not channel_query or not channel_query.strip():
            return None

        channel = self._find_exact(text, channel_query)
        if channel is not None:
            return channel
        return self._find_fuzzy(text, channel_query)

    def _find_exact(self, text: str, channel_query: str) -> Optional[ChannelInfo]:
        name = channel_query.strip()
        pattern = re.compile(
            r"<display-name[^>]*>\s*" + re.escape(name) + r"\s*</display-name>",
            re.IGNORECASE,
        )
        match = pattern.search(text)
        if match is None:
            return None

        name_index = match.start()
        block_start = text.rfind(CHANNEL_OPEN, 0, name_index)
        if block_start == -1:
            return None
        block_end = text.find(CHANNEL_CLOSE, name_index)
        if block_end == -1:
            return None

        block = text[block_start:block_end + len(CHANNEL_CLOSE)]
        id_match = CHANNEL_ID_REGEX.search(block)
        if id_match is None:
            # No identifier: let the fuzzy scan have a go
            return None

        icon_match = CHANNEL_ICON_REGEX.search(block)
        return ChannelInfo(
            id=id_match.group(1),
            display_name=name,
            icon_url=icon_match.group(1) if icon_match else "",
        )

    def _find_fuzzy(self, text: str, channel_query: str) -> Optional[ChannelInfo]:
        target = normalize_name(channel_query)

        pos = text.find(CHANNEL_OPEN)
        while pos != -1:
            end = text.find(CHANNEL_CLOSE, pos)
            if end == -1:
                break

            block = text[pos:end + len(CHANNEL_CLOSE)]
            name_match = DISPLAY_NAME_REGEX.search(block)
            if name_match and normalize_name(name_match.group(1)) == target:
                id_match = CHANNEL_ID_REGEX.search(block)
                icon_match = CHANNEL_ICON_REGEX.search(block)
                return ChannelInfo(
                    id=id_match.group(1) if id_match else "",
                    display_name=name_match.group(1),
                    icon_url=icon_match.group(1) if icon_match else "",
                )

            pos = text.find(CHANNEL_OPEN, end)

        return None

    def extract_programs(
        self,
        text: str,
        channel_id: str,
        date_query: str,
    ) -> List[ProgramEntry]:
        """
        Collect programs of one channel whose start falls on the given date.

        Date matching is a string-prefix test on the start attribute, so a
        program is included by start date only. Results keep document order.
        """
        programs: List[ProgramEntry] = []
        date_prefix = _compact_date(date_query)
        channel_attr = f'channel="{channel_id}"'

        pos = text.find(channel_attr)
        while pos != -1:
            start_tag = text.rfind(PROGRAMME_OPEN, 0, pos)
            end_tag = text.find(PROGRAMME_CLOSE, pos)

            if start_tag != -1 and end_tag != -1:
                block = text[start_tag:end_tag + len(PROGRAMME_CLOSE)]
                entry = self._parse_programme(block, date_prefix)
                if entry is not None:
                    programs.append(entry)

            pos = text.find(channel_attr, pos + 1)

        return programs

    def _parse_programme(self, block: str, date_prefix: str) -> Optional[ProgramEntry]:
        start_match = PROG_START_REGEX.search(block)
        if start_match is None or not start_match.group(1).startswith(date_prefix):
            return None

        stop_match = PROG_STOP_REGEX.search(block)
        title_match = PROG_TITLE_REGEX.search(block)
        desc_match = PROG_DESC_REGEX.search(block)

        return ProgramEntry(
            start=format_time(start_match.group(1)),
            end=format_time(stop_match.group(1)) if stop_match else "",
            title=clean_content(title_match.group(1)) if title_match else DEFAULT_PROGRAM_TITLE,
            description=clean_content(desc_match.group(1)) if desc_match else "",
        )
