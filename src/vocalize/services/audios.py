"""
Audio recordings on the server: upload and lookups.

None of these calls are cached; they always go to the server.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from vocalize.api.client import APIClient, FilePart
from vocalize.common.errors import ErrorKind, VocalizeError, normalized_errors

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/wav"


class AudioService:
    """Endpoints under /audios."""

    def __init__(self, api: APIClient):
        self.api = api

    async def upload_audio(
        self,
        path: str | Path,
        participant_id: str | int,
        vocalization_id: str | int,
        filename: str | None = None,
    ) -> dict[str, Any]:
        """
        Upload a WAV file as multipart form data.

        Args:
            path: Local audio file
            participant_id: Participant the recording belongs to
            vocalization_id: Vocalization that was recorded
            filename: Name sent to the server; defaults to the file's name

        Returns:
            The created audio record
        """
        audio_path = Path(path)
        try:
            content = await asyncio.to_thread(audio_path.read_bytes)
        except OSError as e:
            raise VocalizeError(
                ErrorKind.VALIDATION, f"Cannot read audio file {audio_path}: {e}", cause=e
            ) from e

        with normalized_errors("Failed to upload audio."):
            response = await self.api.post(
                "/audios",
                data={
                    "participante_id": participant_id,
                    "vocalizacao_id": vocalization_id,
                },
                files={
                    "file": FilePart(
                        filename=filename or audio_path.name,
                        content=content,
                        content_type=AUDIO_CONTENT_TYPE,
                    )
                },
            )
        logger.info(
            f"Uploaded {audio_path.name} ({len(content)} bytes) for participant "
            f"{participant_id}, vocalization {vocalization_id}"
        )
        return response.data

    async def get_audios(self) -> list[dict[str, Any]]:
        with normalized_errors("Failed to load audios."):
            response = await self.api.get("/audios")
        return response.data

    async def get_audio(self, audio_id: str | int) -> dict[str, Any]:
        with normalized_errors("Failed to load audio."):
            response = await self.api.get(f"/audios/{audio_id}")
        return response.data

    async def update_audio(self, audio_id: str | int, changes: dict[str, Any]) -> dict[str, Any]:
        with normalized_errors("Failed to update audio."):
            response = await self.api.patch(f"/audios/{audio_id}", json=changes)
        return response.data

    async def delete_audio(self, audio_id: str | int) -> None:
        with normalized_errors("Failed to delete audio."):
            await self.api.delete(f"/audios/{audio_id}")
        logger.info(f"Deleted audio {audio_id}")

    async def get_audios_by_participant(self, participant_id: str | int) -> list[dict[str, Any]]:
        with normalized_errors("Failed to load the participant's audios."):
            response = await self.api.get(f"/audios/participante/{participant_id}")
        return response.data

    async def get_audios_by_vocalization(
        self, vocalization_id: str | int
    ) -> list[dict[str, Any]]:
        with normalized_errors("Failed to load the vocalization's audios."):
            response = await self.api.get(f"/audios/vocalizacao/{vocalization_id}")
        return response.data

    async def count_audios_by_participant(self, participant_id: str | int) -> int:
        """Number of audios recorded for a participant."""
        audios = await self.get_audios_by_participant(participant_id)
        return len(audios or [])

    async def get_audio_play_url(self, audio_id: str | int) -> str:
        """
        Playback URL for an audio.

        The server answers either ``{"url": ...}`` or the bare URL.
        """
        with normalized_errors("Failed to get the audio URL."):
            response = await self.api.get(f"/audios/{audio_id}/play")
        data = response.data
        if isinstance(data, dict):
            url = data.get("url")
            if url:
                return str(url)
            raise VocalizeError(
                ErrorKind.SERVER_REJECTED, "Server returned no playback URL", detail=data
            )
        return str(data)
