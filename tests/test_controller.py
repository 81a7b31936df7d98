"""Tests for session creation, submission and exit codes.

The controller is driven with a scripted session so no reconstruction
engine is needed.
"""

import copy
import io
import logging
import sys
import unittest
from pathlib import Path
from unittest import mock

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))
sys.path.append(str(Path(__file__).resolve().parent))

from fakes import ScriptedSession
from photogen.config import DEFAULT_CONFIG
from photogen.controller import SessionController
from photogen.observer import EventObserver
from photogen.options import (
    Detail,
    FeatureSensitivity,
    ModelFileRequest,
    SampleOrdering,
    make_configuration,
)
from photogen.session import (
    EngineUnsupportedError,
    InputComplete,
    ModelFileResult,
    ProcessingComplete,
    RequestComplete,
    RequestError,
    SessionError,
)
from scripts import run_photogrammetry


def completed_script(output="model.ply"):
    request = ModelFileRequest(Path(output))
    return [
        InputComplete(),
        RequestComplete(request, ModelFileResult(request.url)),
        ProcessingComplete(),
    ]


class TestSessionController(unittest.TestCase):
    """Test the controller's run lifecycle."""

    def setUp(self):
        ScriptedSession.reset(completed_script())
        self.logger = logging.getLogger("test.controller")
        self.controller = SessionController(ScriptedSession, copy.deepcopy(DEFAULT_CONFIG), logger=self.logger)
        self.observer = EventObserver(logger=logging.getLogger("test.controller.observer"), show_progress=False)

    def run_controller(self, detail=None, configuration=None):
        return self.controller.run(
            "images", "model.ply", detail, configuration or make_configuration(), self.observer
        )

    def test_processing_complete_exits_zero(self):
        code = self.run_controller()

        self.assertEqual(code, 0)
        self.assertEqual(len(ScriptedSession.instances), 1)
        self.assertTrue(ScriptedSession.instances[0].closed)

    def test_single_request_without_detail(self):
        """Without flags the default configuration and no detail are used."""
        self.run_controller()

        session = ScriptedSession.instances[0]
        self.assertEqual(session.configuration, make_configuration())
        self.assertEqual(session.submitted, [[ModelFileRequest(Path("model.ply"))]])
        self.assertIsNone(session.submitted[0][0].detail)

    def test_exactly_one_request_for_any_flags(self):
        combinations = [
            (None, make_configuration()),
            (Detail.PREVIEW, make_configuration(SampleOrdering.SEQUENTIAL)),
            (Detail.RAW, make_configuration(feature_sensitivity=FeatureSensitivity.HIGH)),
            (Detail.MEDIUM, make_configuration(SampleOrdering.SEQUENTIAL, FeatureSensitivity.HIGH)),
        ]
        for detail, configuration in combinations:
            ScriptedSession.reset(completed_script())
            self.run_controller(detail, configuration)

            session = ScriptedSession.instances[0]
            self.assertEqual(len(session.submitted), 1)
            self.assertEqual(len(session.submitted[0]), 1)
            self.assertEqual(session.submitted[0][0].detail, detail)
            self.assertEqual(session.configuration, configuration)

    def test_input_folder_resolved(self):
        self.run_controller()
        self.assertTrue(ScriptedSession.instances[0].input_folder.is_absolute())

    def test_unsupported_engine_exits_one_without_session(self):
        ScriptedSession.reset(supported=False)

        with mock.patch("sys.stdout", io.StringIO()) as stdout:
            with self.assertLogs("test.controller", level="ERROR"):
                code = self.run_controller()

        self.assertEqual(code, 1)
        self.assertEqual(ScriptedSession.instances, [])
        self.assertIn("not available on this computer", stdout.getvalue())

    def test_check_supported_raises_for_unsupported_engine(self):
        ScriptedSession.reset(supported=False)

        with self.assertRaises(EngineUnsupportedError) as cm:
            self.controller.check_supported()

        self.assertIn("colmap reconstruction engine", str(cm.exception))

    def test_check_supported_passes_for_supported_engine(self):
        self.assertIsNone(self.controller.check_supported())

    def test_creation_failure_exits_one(self):
        ScriptedSession.reset(create_error=SessionError("No images found in images"))

        with self.assertLogs("test.controller", level="ERROR") as cm:
            code = self.run_controller()

        self.assertEqual(code, 1)
        self.assertTrue(any("No images found" in line for line in cm.output))

    def test_submission_failure_exits_one(self):
        ScriptedSession.reset(completed_script(), process_error=SessionError("queue rejected"))

        with self.assertLogs("test.controller", level="CRITICAL") as cm:
            code = self.run_controller()

        self.assertEqual(code, 1)
        self.assertTrue(any("queue rejected" in line for line in cm.output))
        session = ScriptedSession.instances[0]
        self.assertTrue(session.cancelled)
        self.assertTrue(session.closed)

    def test_request_error_still_completes(self):
        request = ModelFileRequest(Path("model.ply"))
        ScriptedSession.reset([
            RequestError(request, RuntimeError("out of memory")),
            ProcessingComplete(),
        ])

        code = self.run_controller()

        self.assertEqual(code, 0)
        self.assertEqual(self.observer.report.metrics["failed_requests"], 1)

    def test_stream_error_exits_zero(self):
        ScriptedSession.reset([InputComplete()], stream_error=RuntimeError("lost device"))
        self.assertEqual(self.run_controller(), 0)


class TestMain(unittest.TestCase):
    """Test the script entry point with a scripted engine."""

    def setUp(self):
        self.engines = mock.patch.dict(run_photogrammetry.ENGINES, {"colmap": ScriptedSession})
        self.engines.start()
        self.addCleanup(self.engines.stop)

    def test_main_success(self):
        ScriptedSession.reset(completed_script())

        with mock.patch.object(run_photogrammetry, "resolve_export_path", return_value=None):
            with self.assertLogs("photogrammetry", level="INFO") as cm:
                code = run_photogrammetry.main(["images", "model.ply", "-d", "reduced", "-f", "high"])

        self.assertEqual(code, 0)
        session = ScriptedSession.instances[0]
        self.assertEqual(session.submitted[0][0].detail, Detail.REDUCED)
        self.assertEqual(session.configuration.feature_sensitivity, FeatureSensitivity.HIGH)
        output = "\n".join(cm.output)
        self.assertIn("photogrammetry.controller:Using request", output)
        self.assertIn("photogrammetry.observer:Processing successfully completed.", output)

    def test_main_unsupported(self):
        ScriptedSession.reset(supported=False)

        with mock.patch("sys.stdout", io.StringIO()):
            code = run_photogrammetry.main(["images", "model.ply"])

        self.assertEqual(code, 1)
        self.assertEqual(ScriptedSession.instances, [])


if __name__ == "__main__":
    unittest.main()
