"""
Local queue of finished recordings waiting to be uploaded.

Records live as an ordered JSON list under the ``recordings`` key. A record
is appended as "pending" when the recording is saved, flipped to "sent"
after a successful upload and removed when discarded. Every change reports
whether anything is still pending through SessionEvents.pending_changed.
"""

import asyncio
import json
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

from vocalize.common.cache import Clock, now_ms
from vocalize.common.errors import ErrorKind, VocalizeError
from vocalize.common.events import SessionEvents
from vocalize.common.models import PendingRecording, RecordingStatus, UploadReport
from vocalize.common.storage import KeyValueStore
from vocalize.services.audios import AudioService
from vocalize.services.maintenance import RECORDINGS_KEY

logger = logging.getLogger(__name__)

MIN_RECORDING_BYTES = 50
UNKNOWN_VOCALIZATION = "Unknown"


def local_path(uri: str) -> Path:
    """Filesystem path for a recording URI (plain path or file:// URL)."""
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    return Path(uri)


class PendingAudioQueue:
    """The ``recordings`` list and its upload loop."""

    def __init__(
        self,
        store: KeyValueStore,
        events: SessionEvents | None = None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.events = events or SessionEvents()
        self.clock = clock

    async def _load(self) -> list[PendingRecording]:
        raw = await self.store.get(RECORDINGS_KEY)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("recordings is not a list")
            return [PendingRecording.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            # Never overwrite a queue we could not read; the audio would be lost
            raise VocalizeError(
                ErrorKind.STORAGE_CORRUPTION,
                "Stored recordings could not be read",
                cause=e,
            ) from e

    async def _save(self, recordings: list[PendingRecording]) -> None:
        payload = json.dumps([r.to_dict() for r in recordings], ensure_ascii=False)
        await self.store.set(RECORDINGS_KEY, payload)
        self.events.pending_changed(any(r.is_pending for r in recordings))

    async def list_recordings(self, status: RecordingStatus | None = None) -> list[PendingRecording]:
        """All queued recordings in save order, optionally filtered by status."""
        recordings = await self._load()
        if status is None:
            return recordings
        return [r for r in recordings if r.status == status.value]

    async def has_pending(self) -> bool:
        return any(r.is_pending for r in await self._load())

    async def save_recording(
        self,
        uri: str,
        duration: int,
        vocalization_id: int | None,
        participant_id: int | None,
        vocalization_name: str | None = None,
    ) -> PendingRecording:
        """
        Queue a finished recording for upload.

        Args:
            uri: Local path or file:// URL of the audio file
            duration: Length in seconds
            vocalization_id: Vocalization that was recorded
            participant_id: Participant that was recorded
            vocalization_name: Display name kept for listing offline

        Raises:
            VocalizeError: validation when an id is missing, the file does
                not exist or is smaller than 50 bytes
        """
        if not vocalization_id:
            raise VocalizeError(ErrorKind.VALIDATION, "Select a vocalization.")
        if not participant_id:
            raise VocalizeError(ErrorKind.VALIDATION, "Select a participant.")

        path = local_path(uri)
        try:
            size = (await asyncio.to_thread(path.stat)).st_size
        except FileNotFoundError as e:
            raise VocalizeError(
                ErrorKind.VALIDATION, "Audio file does not exist.", cause=e
            ) from e
        if size < MIN_RECORDING_BYTES:
            raise VocalizeError(ErrorKind.VALIDATION, "Audio file is invalid or too small.")

        record = PendingRecording(
            uri=uri,
            timestamp=self.clock(),
            duration=int(duration),
            vocalizationId=int(vocalization_id),
            vocalizationName=vocalization_name or UNKNOWN_VOCALIZATION,
            participanteId=int(participant_id),
        )
        recordings = await self._load()
        recordings.append(record)
        await self._save(recordings)
        logger.info(f"Queued recording {path.name} ({size} bytes, {record.duration}s)")
        return record

    async def mark_sent(self, uri: str) -> bool:
        """Flip a record to "sent". Returns False if no record has that uri."""
        recordings = await self._load()
        found = False
        for record in recordings:
            if record.uri == uri:
                record.status = RecordingStatus.SENT.value
                found = True
        if found:
            await self._save(recordings)
        return found

    async def discard(self, uri: str, delete_file: bool = True) -> bool:
        """
        Drop a record from the queue, and by default its audio file.

        Returns:
            True if a record was removed
        """
        recordings = await self._load()
        remaining = [r for r in recordings if r.uri != uri]
        if len(remaining) == len(recordings):
            return False
        await self._save(remaining)
        if delete_file:
            try:
                await asyncio.to_thread(local_path(uri).unlink, missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete audio file {uri}: {e}")
        logger.info(f"Discarded recording {uri}")
        return True

    async def upload_pending(self, audio_service: AudioService) -> UploadReport:
        """
        Upload every pending recording, oldest first.

        A failed upload is recorded in the report and the loop moves on.
        """
        report = UploadReport()
        for record in await self.list_recordings(RecordingStatus.PENDING):
            try:
                await audio_service.upload_audio(
                    local_path(record.uri),
                    record.participanteId,
                    record.vocalizationId,
                )
            except VocalizeError as e:
                logger.warning(f"Upload of {record.uri} failed ({e.kind.value}): {e.message}")
                report.failed[record.uri] = e.message
                continue
            await self.mark_sent(record.uri)
            report.sent.append(record.uri)

        logger.info(f"Pending upload finished: {len(report.sent)} sent, {len(report.failed)} failed")
        return report
