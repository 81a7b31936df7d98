"""Session event observer.

Drains a session's output stream in emission order, reports each event and
decides the process exit code once a terminal event arrives.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from tqdm import tqdm

from photogen import mesh
from photogen.options import ModelFileRequest
from photogen.report import SessionReport, Timer
from photogen.session import (
    AutomaticDownsampling,
    InputComplete,
    InvalidSample,
    ModelFileResult,
    OutputStreamError,
    PhotogrammetrySession,
    ProcessingCancelled,
    ProcessingComplete,
    RequestComplete,
    RequestError,
    RequestProgress,
    SessionOutput,
    SkippedSample,
)

EXIT_SUCCESS = 0


class EventObserver:
    """Consumes session events and performs the post-processing handoff.

    Args:
        export_path: Where to write the auxiliary model export after a
            successful run, or None to skip it
        logger: Logger to report events to (if None, uses module logger)
        show_progress: Draw a tqdm bar per request
    """

    def __init__(
        self,
        export_path: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
        show_progress: bool = True
    ):
        self.export_path = Path(export_path) if export_path is not None else None
        self.logger = logger or logging.getLogger(__name__)
        self.show_progress = show_progress
        self.report = SessionReport()
        self._bars: Dict[ModelFileRequest, tqdm] = {}
        self._model_path: Optional[Path] = None

    def drain(self, session: PhotogrammetrySession) -> int:
        """Process the session's events until the stream terminates.

        Returns:
            Process exit code
        """
        timer = Timer()
        timer.start()
        try:
            for output in session.outputs():
                if self.handle(output):
                    return EXIT_SUCCESS
        except OutputStreamError as e:
            self.logger.error(f"Output: ERROR = {e}")
            return EXIT_SUCCESS
        finally:
            self._close_bars()
            self.report.update("runtime_s", timer.stop())
            self.logger.info("\n" + self.report.summary())

        # Stream ended without completing, e.g. after a cancellation
        self.logger.info("Output stream ended.")
        return EXIT_SUCCESS

    def handle(self, output: SessionOutput) -> bool:
        """React to a single event.

        Returns:
            True if the event is terminal
        """
        if isinstance(output, ProcessingComplete):
            self.logger.info("Processing successfully completed.")
            self._close_bars()
            self.export_model()
            return True
        elif isinstance(output, RequestError):
            self.report.increment("failed_requests")
            self.logger.error(f"Request {output.request} had an error: {output.error!r}")
        elif isinstance(output, RequestComplete):
            self.handle_request_complete(output)
        elif isinstance(output, RequestProgress):
            self.handle_request_progress(output)
        elif isinstance(output, InputComplete):
            self.logger.info("Data ingestion is complete. Beginning processing...")
        elif isinstance(output, InvalidSample):
            self.report.increment("invalid_samples")
            self.logger.warning(f'Invalid Sample id={output.id}  reason="{output.reason}"')
        elif isinstance(output, SkippedSample):
            self.report.increment("skipped_samples")
            self.logger.warning(f"Sample id={output.id} was skipped by processing.")
        elif isinstance(output, AutomaticDownsampling):
            self.report.update("downsampled", True)
            self.logger.warning("Automatic downsampling applied.")
        elif isinstance(output, ProcessingCancelled):
            self.report.update("cancelled", True)
            self.logger.warning("Processing cancelled.")
        else:
            describe = getattr(output, "describe", None)
            description = describe() if callable(describe) else repr(output)
            self.logger.error(f"Output: unhandled message: {description}")
        return False

    def handle_request_complete(self, output: RequestComplete) -> None:
        self.report.increment("completed_requests")
        self.logger.info(f"Request complete: {output.request} with result...")
        bar = self._bars.pop(output.request, None)
        if bar is not None:
            bar.close()

        if isinstance(output.result, ModelFileResult):
            self._model_path = Path(output.result.url)
            self.report.add_output(self._model_path)
            self.logger.info(f"\tmodelFile available at url={output.result.url}")
        else:
            self.logger.warning(f"\tUnexpected result: {output.result!r}")

    def handle_request_progress(self, output: RequestProgress) -> None:
        self.report.increment("progress_updates")
        self.logger.info(f"Progress(request = {output.request}) = {output.fraction_complete}")

        if not self.show_progress:
            return
        bar = self._bars.get(output.request)
        if bar is None:
            bar = tqdm(total=100, desc=output.request.url.name, unit="%")
            self._bars[output.request] = bar
        bar.update(max(0, round(output.fraction_complete * 100) - bar.n))

    def export_model(self) -> Optional[Path]:
        """Re-export the finished model to the auxiliary path.

        Failures are reported and otherwise ignored.
        """
        if self.export_path is None:
            return None
        if self._model_path is None:
            self.logger.warning("No model file was produced, skipping export.")
            return None

        try:
            exported = mesh.convert_model(self._model_path, self.export_path)
        except (mesh.MeshExportError, OSError, RuntimeError) as e:
            self.logger.error(f"Failed to export {self._model_path} to {self.export_path}: {e}")
            return None

        self.report.add_output(exported)
        self.logger.info(f"{exported.suffix.lstrip('.').upper()} file exported to {exported}")
        return exported

    def _close_bars(self) -> None:
        for bar in self._bars.values():
            bar.close()
        self._bars.clear()
