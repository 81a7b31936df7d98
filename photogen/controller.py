"""Session creation, request submission and run lifetime.

The controller owns the session for the whole run. The event observer drains
the session on its own thread while the controller waits for it, keeping the
session open until the observer has decided the exit code.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Type, Union

from photogen.observer import EventObserver
from photogen.options import (
    Detail,
    ModelFileRequest,
    ReconstructionConfiguration,
    make_request,
)
from photogen.session import EngineUnsupportedError, PhotogrammetrySession, SessionError

EXIT_FAILURE = 1


class SessionController:
    """Creates the reconstruction session and submits the single request.

    Args:
        engine_cls: Session implementation to instantiate
        config: Loaded configuration dictionary
        logger: Logger to use (if None, uses module logger)
    """

    def __init__(
        self,
        engine_cls: Type[PhotogrammetrySession],
        config: Dict,
        logger: Optional[logging.Logger] = None
    ):
        self.engine_cls = engine_cls
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def check_supported(self) -> None:
        """Make sure the engine can run on this host.

        Raises:
            EngineUnsupportedError: If the engine reports no support
        """
        if not self.engine_cls.is_supported(self.config):
            raise EngineUnsupportedError(
                f"The {self.config['engine']['name']} reconstruction engine is not available on this computer."
            )

    def create(
        self,
        input_folder: Union[str, Path],
        configuration: ReconstructionConfiguration
    ) -> PhotogrammetrySession:
        """Create a session bound to the input folder.

        Raises:
            SessionError: If the engine rejects the folder or configuration
        """
        input_folder = Path(input_folder).expanduser().resolve()
        self.logger.info(f"Using configuration: {configuration}")
        session = self.engine_cls(input_folder, configuration, self.config)
        self.logger.info("Successfully created session.")
        return session

    def submit(self, session: PhotogrammetrySession, requests: List[ModelFileRequest]) -> None:
        for request in requests:
            self.logger.info(f"Using request: {request}")
        session.process(requests)

    def run(
        self,
        input_folder: Union[str, Path],
        output_filename: Union[str, Path],
        detail: Optional[Detail],
        configuration: ReconstructionConfiguration,
        observer: EventObserver
    ) -> int:
        """Run one reconstruction end to end.

        Returns:
            Process exit code
        """
        try:
            self.check_supported()
        except EngineUnsupportedError as e:
            self.logger.error("Failed to run. Hardware doesn't support the reconstruction engine.")
            print(e)
            return EXIT_FAILURE

        try:
            session = self.create(input_folder, configuration)
        except SessionError as e:
            self.logger.error(f"Error creating session: {e!r}")
            return EXIT_FAILURE

        result = {}

        def drain():
            result["code"] = observer.drain(session)

        waiter = threading.Thread(target=drain, name="event-observer", daemon=True)

        with session:
            waiter.start()
            try:
                request = make_request(output_filename, detail)
                self.submit(session, [request])
            except SessionError as e:
                self.logger.critical(f"Process got error: {e!r}")
                session.cancel()
                waiter.join()
                return EXIT_FAILURE
            waiter.join()

        return result.get("code", EXIT_FAILURE)
