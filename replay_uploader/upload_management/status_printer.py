"""Live status table for a batch of uploads."""

from __future__ import annotations

from typing import Any

from rich import box
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from replay_uploader.event_emitter import Emitter, get_or_init_emitter
from replay_uploader.models import ProcessingStatus, Recording, UploadStatus

STATUS_STYLES = {
    "uploading…": "yellow",
    "processing…": "yellow",
    "uploaded": "green",
    "uploaded+processed": "green",
    "failed": "red",
}


def describe_status(recording: Recording) -> str:
    """Short status label shown next to a recording."""
    if recording.processing_status == ProcessingStatus.PROCESSING:
        return "processing…"
    if recording.processing_status == ProcessingStatus.PROCESSED:
        return "uploaded+processed"
    if recording.processing_status == ProcessingStatus.FAILED:
        return "processing failed"
    if recording.upload_status == UploadStatus.FAILED:
        return "failed"
    if recording.upload_status == UploadStatus.UPLOADING:
        return "uploading…"
    if recording.upload_status == UploadStatus.UPLOADED:
        return "uploaded"
    return ""


class UploadStatusPrinter:
    """Re-renders a table whenever a recording's status changes."""

    def __init__(self, recordings: list[Recording], console: Console | None = None):
        """Initialise the printer.

        Args:
            recordings: Recordings in the batch, in display order.
            console: Console to render to.
        """
        self._recordings = recordings
        self._console = console or Console()
        self._live: Live | None = None
        self._done = False

    def render(self) -> Table:
        """Build the status table."""
        table = Table(
            title="Uploaded recordings" if self._done else "Uploading recordings...",
            box=box.MINIMAL,
            show_header=True,
            header_style="bold",
            expand=False,
        )
        table.add_column("ID", no_wrap=True)
        table.add_column("Host", min_width=8, max_width=40, overflow="fold")
        table.add_column("Date", no_wrap=True)
        table.add_column("Status", no_wrap=True)

        for recording in self._recordings:
            label = describe_status(recording)
            table.add_row(
                recording.id[:7],
                recording.metadata.host or recording.metadata.title or "",
                recording.create_time.strftime("%Y-%m-%d %H:%M"),
                Text(
                    f"({label})" if label else "",
                    style=STATUS_STYLES.get(label, "dim"),
                ),
            )
        return table

    def start(self) -> None:
        """Start rendering and follow status changes."""
        get_or_init_emitter().on(Emitter.RECORDING_STATUS_CHANGED, self._refresh)
        self._live = Live(self.render(), console=self._console, refresh_per_second=4)
        self._live.start()

    def stop(self) -> None:
        """Render the final table and the failure summary."""
        get_or_init_emitter().remove_listener(
            Emitter.RECORDING_STATUS_CHANGED, self._refresh
        )
        self._done = True
        if self._live is not None:
            self._live.update(self.render())
            self._live.stop()
            self._live = None

        failed = [
            r for r in self._recordings if r.upload_status != UploadStatus.UPLOADED
        ]
        if failed:
            self._console.print(
                Text(
                    f"{len(failed)} recording(s) did not upload successfully",
                    style="red bold",
                )
            )

    def _refresh(self, *_: Any) -> None:
        if self._live is not None:
            self._live.update(self.render())
