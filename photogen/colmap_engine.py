"""Reconstruction session backed by the COLMAP command-line tools.

The session copies the usable input images into a workspace, then runs the
COLMAP stages (feature extraction, matching, mapping, undistortion,
PatchMatch stereo, fusion and Poisson meshing) for each request on a worker
thread. Every stage is a subprocess; this module only builds the commands and
turns their outcome into session events.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
from tqdm import tqdm

from photogen import mesh
from photogen.config import DEFAULT_CONFIG
from photogen.options import (
    Detail,
    FeatureSensitivity,
    ModelFileRequest,
    ReconstructionConfiguration,
    SampleOrdering,
)
from photogen.session import (
    AutomaticDownsampling,
    InputComplete,
    InvalidSample,
    ModelFileResult,
    PhotogrammetrySession,
    ProcessingCancelled,
    ProcessingComplete,
    RequestComplete,
    RequestError,
    RequestProgress,
    SessionError,
    SkippedSample,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff"}

MAX_NUM_FEATURES = 8192
HIGH_SENSITIVITY_MAX_NUM_FEATURES = 16384
HIGH_SENSITIVITY_PEAK_THRESHOLD = 0.002


@dataclass(frozen=True)
class DetailSettings:
    # None means no size limit
    max_image_size: Optional[int]
    poisson_depth: int


DETAIL_SETTINGS = {
    Detail.PREVIEW: DetailSettings(max_image_size=640, poisson_depth=6),
    Detail.REDUCED: DetailSettings(max_image_size=1280, poisson_depth=8),
    Detail.MEDIUM: DetailSettings(max_image_size=2000, poisson_depth=9),
    Detail.FULL: DetailSettings(max_image_size=3200, poisson_depth=10),
    Detail.RAW: DetailSettings(max_image_size=None, poisson_depth=11),
}

DEFAULT_DETAIL = Detail.MEDIUM


def find_images(image_dir: Path) -> List[Path]:
    """List image files in a directory, sorted by name."""
    return sorted(
        p for p in Path(image_dir).iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )


def build_stage_commands(
    executable: str,
    workspace: Path,
    image_dir: Path,
    configuration: ReconstructionConfiguration,
    settings: DetailSettings,
    use_gpu: bool = True
) -> List[Tuple[str, List[str]]]:
    """Build the COLMAP command lines for one model-file request.

    Args:
        executable: COLMAP executable
        workspace: Request workspace directory
        image_dir: Directory holding the ingested images
        configuration: Session configuration
        settings: Detail-dependent limits
        use_gpu: Let COLMAP use CUDA where it can

    Returns:
        List of (stage name, argument list) pairs, in execution order
    """
    gpu = "1" if use_gpu else "0"
    database_path = workspace / "database.db"
    sparse_dir = workspace / "sparse"
    dense_dir = workspace / "dense"

    extractor = [
        executable, "feature_extractor",
        "--database_path", str(database_path),
        "--image_path", str(image_dir),
        "--SiftExtraction.use_gpu", gpu,
    ]
    if configuration.feature_sensitivity == FeatureSensitivity.HIGH:
        extractor += [
            "--SiftExtraction.max_num_features", str(HIGH_SENSITIVITY_MAX_NUM_FEATURES),
            "--SiftExtraction.peak_threshold", str(HIGH_SENSITIVITY_PEAK_THRESHOLD),
        ]
    else:
        extractor += ["--SiftExtraction.max_num_features", str(MAX_NUM_FEATURES)]
    if settings.max_image_size is not None:
        extractor += ["--SiftExtraction.max_image_size", str(settings.max_image_size)]

    if configuration.sample_ordering == SampleOrdering.SEQUENTIAL:
        matcher_type = "sequential_matcher"
    else:
        matcher_type = "exhaustive_matcher"
    matcher = [
        executable, matcher_type,
        "--database_path", str(database_path),
        "--SiftMatching.use_gpu", gpu,
    ]

    mapper = [
        executable, "mapper",
        "--database_path", str(database_path),
        "--image_path", str(image_dir),
        "--output_path", str(sparse_dir),
    ]

    undistorter = [
        executable, "image_undistorter",
        "--image_path", str(image_dir),
        "--input_path", str(sparse_dir / "0"),
        "--output_path", str(dense_dir),
        "--output_type", "COLMAP",
    ]
    if settings.max_image_size is not None:
        undistorter += ["--max_image_size", str(settings.max_image_size)]

    stereo = [
        executable, "patch_match_stereo",
        "--workspace_path", str(dense_dir),
        "--workspace_format", "COLMAP",
        "--PatchMatchStereo.geom_consistency", "true",
    ]

    fusion = [
        executable, "stereo_fusion",
        "--workspace_path", str(dense_dir),
        "--workspace_format", "COLMAP",
        "--input_type", "geometric",
        "--output_path", str(dense_dir / "fused.ply"),
    ]

    mesher = [
        executable, "poisson_mesher",
        "--input_path", str(dense_dir / "fused.ply"),
        "--output_path", str(dense_dir / "meshed-poisson.ply"),
        "--PoissonMeshing.depth", str(settings.poisson_depth),
    ]

    return [
        ("feature_extractor", extractor),
        (matcher_type, matcher),
        ("mapper", mapper),
        ("image_undistorter", undistorter),
        ("patch_match_stereo", stereo),
        ("stereo_fusion", fusion),
        ("poisson_mesher", mesher),
    ]


class ColmapSession(PhotogrammetrySession):
    """Photogrammetry session running the COLMAP pipeline.

    Raises:
        SessionError: If the input folder is missing or holds no images
    """

    def __init__(
        self,
        input_folder: Path,
        configuration: ReconstructionConfiguration,
        config: Optional[Dict] = None
    ):
        super().__init__(input_folder, configuration, config)
        self.engine_config = {**DEFAULT_CONFIG["engine"], **self.config.get("engine", {})}
        self.executable = self.engine_config["colmap_executable"]

        if not self.input_folder.is_dir():
            raise SessionError(f"Input folder does not exist: {self.input_folder}")
        self.samples = find_images(self.input_folder)
        if not self.samples:
            raise SessionError(f"No images found in {self.input_folder}")
        logger.info(f"Found {len(self.samples)} images in {self.input_folder}")

        self.workspace: Optional[Path] = None
        self._owns_workspace = False
        self._worker: Optional[threading.Thread] = None
        self._process: Optional[subprocess.Popen] = None
        self._process_lock = threading.Lock()

    @classmethod
    def is_supported(cls, config: Optional[Dict] = None) -> bool:
        """Check that the COLMAP executable exists and runs."""
        engine = {**DEFAULT_CONFIG["engine"], **(config or {}).get("engine", {})}
        executable = engine["colmap_executable"]
        if shutil.which(executable) is None and not Path(executable).is_file():
            logger.warning(f"COLMAP executable not found: {executable}")
            return False

        try:
            result = subprocess.run(
                [executable, "--help"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Error testing COLMAP: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"COLMAP test failed with return code: {result.returncode}")
            return False
        return True

    def _start(self, requests: List[ModelFileRequest]) -> None:
        workspace_dir = self.engine_config.get("workspace_dir")
        if workspace_dir:
            self.workspace = Path(workspace_dir)
            self.workspace.mkdir(parents=True, exist_ok=True)
        else:
            self.workspace = Path(tempfile.mkdtemp(prefix="photogen_"))
            self._owns_workspace = True
        logger.debug(f"Using workspace {self.workspace}")

        self._worker = threading.Thread(
            target=self._work, args=(requests,), name="colmap-session", daemon=True
        )
        self._worker.start()

    def _on_cancel(self) -> None:
        with self._process_lock:
            if self._process is not None and self._process.poll() is None:
                logger.info("Terminating running COLMAP process")
                self._process.terminate()

    def close(self) -> None:
        super().close()
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout=30)
        if self._owns_workspace and not self.engine_config.get("keep_workspace"):
            shutil.rmtree(self.workspace, ignore_errors=True)
            self._owns_workspace = False

    def _work(self, requests: List[ModelFileRequest]) -> None:
        try:
            image_dir = self.workspace / "images"
            n_usable = self._ingest(image_dir, requests)

            for index, request in enumerate(requests):
                if self.cancelled:
                    break
                try:
                    if n_usable == 0:
                        raise SessionError("No usable images after ingestion")
                    self._process_request(index, request, image_dir)
                except (SessionError, mesh.MeshExportError, OSError) as e:
                    logger.debug(f"Request {request} failed: {e}")
                    self.channel.put(RequestError(request, e))

            if self.cancelled:
                self.channel.put(ProcessingCancelled())
            else:
                self.channel.put(ProcessingComplete())
            self.channel.close()
        except Exception as e:
            logger.exception(f"COLMAP session worker failed: {e}")
            self.channel.fail(e)

    def _ingest(self, image_dir: Path, requests: List[ModelFileRequest]) -> int:
        """Copy usable samples into the workspace.

        Returns:
            Number of usable images
        """
        image_dir.mkdir(parents=True, exist_ok=True)
        limits = [DETAIL_SETTINGS[r.detail or DEFAULT_DETAIL].max_image_size for r in requests]
        size_limit = None if None in limits else max(limits)
        min_size = int(self.engine_config.get("min_image_size") or 0)

        n_usable = 0
        oversized = False
        for sample_id, path in enumerate(tqdm(self.samples, desc="Reading images")):
            if self.cancelled:
                break

            image = cv2.imread(str(path))
            if image is None:
                self.channel.put(InvalidSample(sample_id, f"Unable to decode image {path.name}"))
                continue

            height, width = image.shape[:2]
            if min(height, width) < min_size:
                self.channel.put(SkippedSample(sample_id))
                continue
            if size_limit is not None and max(height, width) > size_limit:
                oversized = True

            shutil.copy2(path, image_dir / path.name)
            n_usable += 1

        logger.info(f"Ingested {n_usable} of {len(self.samples)} images")
        if oversized:
            self.channel.put(AutomaticDownsampling())
        self.channel.put(InputComplete())
        return n_usable

    def _process_request(self, index: int, request: ModelFileRequest, image_dir: Path) -> None:
        settings = DETAIL_SETTINGS[request.detail or DEFAULT_DETAIL]
        request_dir = self.workspace / f"request_{index}"
        (request_dir / "sparse").mkdir(parents=True, exist_ok=True)
        (request_dir / "dense").mkdir(parents=True, exist_ok=True)

        stages = build_stage_commands(
            self.executable, request_dir, image_dir, self.configuration, settings,
            use_gpu=bool(self.engine_config.get("use_gpu", True))
        )
        # The final step, publishing the mesh, counts as one more stage
        n_steps = len(stages) + 1

        for step, (name, args) in enumerate(stages, start=1):
            if self.cancelled:
                return
            returncode = self._run_stage(name, args, request_dir)
            if self.cancelled:
                return
            if returncode != 0:
                raise SessionError(f"COLMAP {name} failed with return code {returncode}")
            self.channel.put(RequestProgress(request, step / n_steps))

        mesh.convert_model(request_dir / "dense" / "meshed-poisson.ply", request.url)
        self.channel.put(RequestProgress(request, 1.0))
        self.channel.put(RequestComplete(request, ModelFileResult(request.url)))

    def _run_stage(self, name: str, args: List[str], working_dir: Path) -> int:
        logger.info(f"Running COLMAP {name}")
        logger.debug(f"Executing command: {' '.join(args)}")

        with self._process_lock:
            if self.cancelled:
                return -1
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                cwd=str(working_dir)
            )
            self._process = process

        for line in process.stdout:
            logger.debug(line.rstrip())
        returncode = process.wait()

        with self._process_lock:
            self._process = None
        return returncode
