"""
Minimal session description (SDP) model.

Only what the benchmark needs: validate that a server answer is a
well-formed description with at least one media section, and expose the
media sections (kind, direction, mid) for logging and for the engine.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import SdpError

DIRECTIONS = ("sendrecv", "sendonly", "recvonly", "inactive")

# Session-level lines that must appear before the first m= line.
REQUIRED_SESSION_FIELDS = ("v", "o", "s", "t")


@dataclass
class MediaDescription:
    """One ``m=`` section and the attribute lines that follow it."""
    kind: str
    port: int
    proto: str
    formats: List[str]
    attributes: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    lines: List[Tuple[str, str]] = field(default_factory=list)

    def attribute(self, name: str) -> Optional[str]:
        for key, value in self.attributes:
            if key == name:
                return value if value is not None else ""
        return None

    @property
    def mid(self) -> Optional[str]:
        return self.attribute("mid")

    @property
    def direction(self) -> str:
        for key, _ in self.attributes:
            if key in DIRECTIONS:
                return key
        return "sendrecv"


@dataclass
class SessionDescription:
    """A parsed session description."""
    lines: List[Tuple[str, str]]
    media: List[MediaDescription]

    @classmethod
    def parse(cls, text: str) -> "SessionDescription":
        """
        Parse SDP text.

        Raises:
            SdpError: if the text is empty, not made of ``x=value`` lines,
                misses a mandatory session field, or has no media section.
        """
        if not text or not text.strip():
            raise SdpError("empty session description")

        session_lines: List[Tuple[str, str]] = []
        media: List[MediaDescription] = []

        for number, raw in enumerate(text.replace("\r\n", "\n").split("\n"), start=1):
            line = raw.strip()
            if not line:
                continue
            if len(line) < 2 or line[1] != "=" or not line[0].isalpha():
                raise SdpError(f"malformed line {number}: {line[:40]!r}")

            key, value = line[0], line[2:]

            if not session_lines and not media and (key != "v" or value != "0"):
                raise SdpError("session description must start with v=0")

            if key == "m":
                media.append(_parse_media_line(value, number))
            elif media:
                current = media[-1]
                current.lines.append((key, value))
                if key == "a":
                    current.attributes.append(_split_attribute(value))
            else:
                session_lines.append((key, value))

        present = {key for key, _ in session_lines}
        missing = [key for key in REQUIRED_SESSION_FIELDS if key not in present]
        if missing:
            raise SdpError(f"missing session fields: {', '.join(missing)}")
        if not media:
            raise SdpError("no media sections")

        return cls(lines=session_lines, media=media)

    def to_sdp_string(self) -> str:
        out = [f"{key}={value}" for key, value in self.lines]
        for section in self.media:
            out.append(
                f"m={section.kind} {section.port} {section.proto} {' '.join(section.formats)}"
            )
            out.extend(f"{key}={value}" for key, value in section.lines)
        return "\r\n".join(out) + "\r\n"

    def summary(self) -> str:
        """Short form for logs, e.g. ``audio:recvonly video:recvonly``."""
        return " ".join(f"{m.kind}:{m.direction}" for m in self.media)


def _parse_media_line(value: str, number: int) -> MediaDescription:
    parts = value.split()
    if len(parts) < 4:
        raise SdpError(f"malformed media line {number}: {value!r}")
    kind, port, proto = parts[0], parts[1], parts[2]
    try:
        port_number = int(port.split("/")[0])
    except ValueError:
        raise SdpError(f"invalid media port on line {number}: {port!r}") from None
    return MediaDescription(kind=kind, port=port_number, proto=proto, formats=parts[3:])


def _split_attribute(value: str) -> Tuple[str, Optional[str]]:
    name, sep, rest = value.partition(":")
    return (name, rest if sep else None)
