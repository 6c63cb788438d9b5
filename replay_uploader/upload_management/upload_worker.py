"""Incremental uploader for integrations that find recordings one at a time."""

from __future__ import annotations

import logging

import aiohttp

from replay_uploader.async_utils import Deferred, WorkQueue, create_settled_deferred
from replay_uploader.config_manager import UploaderConfig
from replay_uploader.exceptions import ReplayUploaderError
from replay_uploader.models import ProcessingBehavior, Recording, UploadStatus
from replay_uploader.protocol import ProtocolClient
from replay_uploader.recording_log import RecordingStore
from replay_uploader.upload_management.recording_uploader import (
    upload_recording_or_crash_data,
)
from replay_uploader.upload_management.upload_context import UploadContext

logger = logging.getLogger(__name__)


class UploadWorker:
    """Starts uploads as recordings arrive and settles them all in ``end``.

    Multipart uploads are always allowed here.
    """

    def __init__(
        self,
        config: UploaderConfig,
        processing_behavior: ProcessingBehavior,
        delete_on_success: bool = False,
        store: RecordingStore | None = None,
    ) -> None:
        """Initialise the worker.

        Args:
            config: Uploader configuration.
            processing_behavior: What to do after each upload.
            delete_on_success: Remove uploaded recordings from disk in ``end``.
            store: Log store; defaults to the configured recordings directory.
        """
        self.config = config
        self.processing_behavior = processing_behavior
        self.delete_on_success = delete_on_success
        self.store = store or RecordingStore(config.recordings_dir)

        self._client_session: aiohttp.ClientSession | None = None
        self._client: ProtocolClient | None = None
        self._context: UploadContext | None = None
        self._deferreds: list[Deferred[bool, Recording]] = []

    async def start(self) -> None:
        """Open the protocol connection; authentication continues in the background."""
        self._client_session = aiohttp.ClientSession()
        self._client = ProtocolClient(
            self.config.server_url, self.config.api_key, session=self._client_session
        )
        await self._client.connect()
        self._context = UploadContext.create(
            self._client,
            self._client_session,
            self.store,
            self.config,
            WorkQueue(self.config.transfer_concurrency),
            WorkQueue(self.config.source_map_concurrency),
        )

    def upload(self, recording: Recording) -> Deferred[bool, Recording]:
        """Start uploading ``recording``.

        Returns:
            A deferred resolved with whether the upload succeeded.
        """
        if self._client is None or self._context is None:
            raise ReplayUploaderError("UploadWorker.start() has not been called")
        client = self._client
        context = self._context

        async def run() -> None:
            await client.wait_until_authenticated()
            await upload_recording_or_crash_data(
                context, recording, True, self.processing_behavior
            )

        deferred = create_settled_deferred(recording, run())
        self._deferreds.append(deferred)
        return deferred

    async def end(self) -> list[Recording]:
        """Wait for every upload, close the connection and return the recordings.

        Raises:
            Exception: The authentication failure, if the connection never
                authenticated.
        """
        if self._client is None:
            raise ReplayUploaderError("UploadWorker.start() has not been called")
        try:
            await self._client.wait_until_authenticated()
        except Exception:
            await self._close()
            raise

        for deferred in self._deferreds:
            await deferred
        await self._close()

        recordings = [d.data for d in self._deferreds if d.data is not None]
        if self.delete_on_success:
            for recording in recordings:
                if recording.upload_status == UploadStatus.UPLOADED:
                    await self.store.remove_from_disk(recording.id)
        return recordings

    async def _close(self) -> None:
        if self._client is not None:
            await self._client.close()
        if self._client_session is not None:
            await self._client_session.close()
            self._client_session = None
