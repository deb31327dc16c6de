"""
Control-Plane Response Schemas
==============================

Pydantic models for the subset of the media server's HTTP API consumed by the
companion. Unknown fields are ignored.

Example response (GET /api/items/{id}?expanded=1, trimmed):
    {
        "id": "li_123",
        "media": {
            "audioFiles": [
                {"codec": "mp3", "bitRate": 128000, "channels": 2}
            ]
        }
    }
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from abs_companion.models.media import MediaDescriptor


class AudioFile(BaseModel):
    """Audio stream metadata of one file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    codec: str = Field(default="", description="Codec name as reported by the server")
    bit_rate: int = Field(default=0, ge=0, alias="bitRate", description="Bitrate in bps")
    channels: int = Field(default=0, ge=0, description="Channel count")


class ItemMedia(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    audio_files: List[AudioFile] = Field(default_factory=list, alias="audioFiles")


class ItemDetails(BaseModel):
    """Expanded library item."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    media: Optional[ItemMedia] = None

    def media_descriptor(self) -> Optional[MediaDescriptor]:
        """
        Descriptor of the first audio file.

        Returns:
            MediaDescriptor, or None if the item has no audio files or the
            first file reports no codec
        """
        if self.media is None or not self.media.audio_files:
            return None
        audio = self.media.audio_files[0]
        if not audio.codec.strip():
            return None
        return MediaDescriptor(
            codec=audio.codec,
            bit_rate=audio.bit_rate,
            channels=audio.channels,
        )


class Library(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    media_type: str = Field(default="", alias="mediaType")
