"""Upload a batch of recordings over one shared protocol connection."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from rich.console import Console

from replay_uploader.async_utils import Deferred, WorkQueue, create_settled_deferred
from replay_uploader.config_manager import ConfigManager, UploaderConfig
from replay_uploader.const import MULTIPART_FEATURE_FLAG
from replay_uploader.event_emitter import Emitter, get_or_init_emitter
from replay_uploader.exceptions import AuthenticationRequiredError, ProtocolError
from replay_uploader.models import ProcessingBehavior, Recording, UploadStatus
from replay_uploader.protocol import ProtocolClient
from replay_uploader.recording_log import RecordingStore, can_upload
from replay_uploader.session import FeatureFlagService, TelemetrySink
from replay_uploader.upload_management.recording_uploader import (
    upload_recording_or_crash_data,
)
from replay_uploader.upload_management.status_printer import UploadStatusPrinter
from replay_uploader.upload_management.upload_context import UploadContext

logger = logging.getLogger(__name__)


def authentication_failed_message(api_key_env_var: str | None) -> str:
    """User-facing message for a rejected access token."""
    message = "Authentication failed."
    if api_key_env_var:
        return f"{message} Please check your {api_key_env_var}."
    return f"{message} Please try to replay login again."


class UploadManager:
    """Uploads recordings concurrently, isolating each recording's failure.

    The transfer and source-map queues live as long as the manager, so their
    concurrency limits hold across every recording it uploads.
    """

    def __init__(
        self,
        config: UploaderConfig | None = None,
        store: RecordingStore | None = None,
        feature_flags: FeatureFlagService | None = None,
        telemetry: TelemetrySink | None = None,
        console: Console | None = None,
        api_key_env_var: str | None = None,
    ) -> None:
        """Initialise the manager.

        Args:
            config: Uploader configuration; resolved from the environment
                when omitted.
            store: Log store; defaults to the configured recordings directory.
            feature_flags: Source of the multipart feature flag.
            telemetry: Receives the ``upload.results`` event.
            console: Console the status table renders to.
            api_key_env_var: Environment variable the API key came from, named
                in authentication errors.
        """
        if config is None:
            config_manager = ConfigManager()
            config = config_manager.resolve_effective_config()
            api_key_env_var = api_key_env_var or config_manager.api_key_source()
        self.config = config
        self.store = store or RecordingStore(config.recordings_dir)
        self._feature_flags = feature_flags
        self._telemetry = telemetry
        self._console = console
        self._api_key_env_var = api_key_env_var

        self.transfer_queue = WorkQueue(config.transfer_concurrency)
        self.source_map_queue = WorkQueue(config.source_map_concurrency)

    async def is_multipart_enabled(self) -> bool:
        """Read the multipart feature flag; off when it cannot be read."""
        if self._feature_flags is None:
            return False
        try:
            return bool(
                await self._feature_flags.get_feature_flag_value(
                    MULTIPART_FEATURE_FLAG, False
                )
            )
        except Exception as e:
            logger.debug(f"Could not read feature flag {MULTIPART_FEATURE_FLAG}: {e}")
            return False

    async def upload_recordings(
        self,
        recordings: list[Recording],
        processing_behavior: ProcessingBehavior,
        delete_on_success: bool = True,
        silent: bool = False,
    ) -> list[Recording]:
        """Upload every uploadable recording in ``recordings``.

        Args:
            recordings: Candidates; those failing ``can_upload`` are skipped.
            processing_behavior: What to do after each upload.
            delete_on_success: Remove uploaded recordings from disk.
            silent: Do not render the status table.

        Returns:
            The recordings that were attempted, with their final statuses.

        Raises:
            AuthenticationRequiredError: If the server rejected the token.
        """
        uploadable = []
        for recording in recordings:
            if can_upload(recording):
                uploadable.append(recording)
            else:
                logger.debug(f"Cannot upload recording {recording.id}")

        multipart = await self.is_multipart_enabled()

        async with aiohttp.ClientSession() as client_session:
            client = ProtocolClient(
                self.config.server_url, self.config.api_key, session=client_session
            )
            await client.connect()
            try:
                await self._wait_until_authenticated(client)

                context = UploadContext.create(
                    client,
                    client_session,
                    self.store,
                    self.config,
                    self.transfer_queue,
                    self.source_map_queue,
                )
                deferreds: list[Deferred[bool, Recording]] = [
                    create_settled_deferred(
                        recording,
                        upload_recording_or_crash_data(
                            context, recording, multipart, processing_behavior
                        ),
                    )
                    for recording in uploadable
                ]

                printer = None
                if not silent:
                    printer = UploadStatusPrinter(uploadable, console=self._console)
                    printer.start()
                try:
                    await asyncio.gather(*(deferred.future for deferred in deferreds))
                finally:
                    if printer is not None:
                        printer.stop()
            finally:
                await client.close()

        uploaded = [r for r in uploadable if r.upload_status == UploadStatus.UPLOADED]
        failed_count = len(uploadable) - len(uploaded)
        logger.info(f"Uploaded {len(uploaded)} recording(s), {failed_count} failed")

        get_or_init_emitter().emit(Emitter.BATCH_FINISHED, len(uploaded), failed_count)
        if self._telemetry is not None:
            self._telemetry.track_event(
                "upload.results",
                {"uploadedCount": len(uploaded), "failedCount": failed_count},
            )

        if delete_on_success:
            for recording in uploaded:
                await self.store.remove_from_disk(recording.id)

        return [deferred.data for deferred in deferreds if deferred.data is not None]

    async def _wait_until_authenticated(self, client: ProtocolClient) -> None:
        try:
            await client.wait_until_authenticated()
        except ProtocolError as e:
            if e.is_authentication_required:
                raise AuthenticationRequiredError(
                    authentication_failed_message(self._api_key_env_var)
                ) from e
            raise
