"""Container metadata tags (libavformat's generic tag names)."""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class Metadata(BaseModel):
    """Standard metadata tags, as written with ``-metadata key=value``
    and reported by ffprobe under ``tags``.

    Empty strings mean "not set".
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    album: str = ""
    album_artist: str = ""  # e.g. "Various Artists" for compilations
    artist: str = ""
    comment: str = ""
    composer: str = ""
    copyright: str = ""
    creation_time: str = ""  # preferably ISO 8601
    date: str = ""  # preferably ISO 8601
    disc: str = ""
    encoder: str = ""
    encoded_by: str = ""
    filename: str = ""
    genre: str = ""
    language: str = ""  # ISO 639-2, comma separated
    performer: str = ""
    publisher: str = ""
    service_name: str = ""
    service_provider: str = ""
    title: str = ""
    track: str = ""  # current or current/total
    variant_bitrate: str = ""

    # Tag names in declaration order; also the ffmpeg key names.
    KEYS: ClassVar[tuple[str, ...]] = (
        "album",
        "album_artist",
        "artist",
        "comment",
        "composer",
        "copyright",
        "creation_time",
        "date",
        "disc",
        "encoder",
        "encoded_by",
        "filename",
        "genre",
        "language",
        "performer",
        "publisher",
        "service_name",
        "service_provider",
        "title",
        "track",
        "variant_bitrate",
    )

    def to_map(self) -> dict[str, str]:
        """Return the tags that are set."""
        return {key: getattr(self, key) for key in self.KEYS if getattr(self, key)}

    def merge(self, other: "Metadata") -> "Metadata":
        """Return a copy where tags unset here are taken from ``other``."""
        merged = {}
        for key in self.KEYS:
            value = getattr(self, key)
            merged[key] = value if value else getattr(other, key)
        return Metadata(**merged)
