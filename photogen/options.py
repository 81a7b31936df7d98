"""Command-line option values and their validation.

This module holds the enumerated settings a reconstruction run accepts, the
immutable session configuration built from them, and the single model-file
request submitted to the engine.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Type, TypeVar, Union


class Detail(enum.Enum):
    """Mesh resolution tier requested for the output model."""

    PREVIEW = "preview"
    REDUCED = "reduced"
    MEDIUM = "medium"
    FULL = "full"
    RAW = "raw"


class SampleOrdering(enum.Enum):
    """Whether the input images were captured along a sequential path."""

    UNORDERED = "unordered"
    SEQUENTIAL = "sequential"


class FeatureSensitivity(enum.Enum):
    """How aggressively the engine looks for matchable features."""

    NORMAL = "normal"
    HIGH = "high"


class IllegalOptionError(ValueError):
    """Raised when an enumerated option receives a value outside its set."""

    option = "option"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"invalid {self.option} value: {value!r}")


class InvalidDetail(IllegalOptionError):
    option = "detail"


class InvalidSampleOrdering(IllegalOptionError):
    option = "sampleOrdering"


class InvalidFeatureSensitivity(IllegalOptionError):
    option = "featureSensitivity"


E = TypeVar("E", bound=enum.Enum)


def _parse(enum_cls: Type[E], error_cls: Type[IllegalOptionError], raw: str) -> E:
    # Case-sensitive on purpose: "Full" is not "full".
    for member in enum_cls:
        if member.value == raw:
            return member
    raise error_cls(raw)


def parse_detail(raw: str) -> Detail:
    """Parse a detail level string.

    Args:
        raw: One of preview, reduced, medium, full, raw

    Returns:
        Matching Detail member

    Raises:
        InvalidDetail: If the string is not an allowed detail level
    """
    return _parse(Detail, InvalidDetail, raw)


def parse_sample_ordering(raw: str) -> SampleOrdering:
    """Parse a sample ordering string (unordered, sequential)."""
    return _parse(SampleOrdering, InvalidSampleOrdering, raw)


def parse_feature_sensitivity(raw: str) -> FeatureSensitivity:
    """Parse a feature sensitivity string (normal, high)."""
    return _parse(FeatureSensitivity, InvalidFeatureSensitivity, raw)


@dataclass(frozen=True)
class ReconstructionConfiguration:
    """Session-wide engine hints, fixed before the session is created."""

    sample_ordering: SampleOrdering = SampleOrdering.UNORDERED
    feature_sensitivity: FeatureSensitivity = FeatureSensitivity.NORMAL

    def __str__(self) -> str:
        return (
            f"Configuration(sampleOrdering={self.sample_ordering.value}, "
            f"featureSensitivity={self.feature_sensitivity.value})"
        )


@dataclass(frozen=True)
class ModelFileRequest:
    """Request for a mesh written to ``url``.

    When ``detail`` is None the engine picks its own default level.
    """

    url: Path
    detail: Optional[Detail] = None

    def __str__(self) -> str:
        if self.detail is None:
            return f"modelFile(url={self.url})"
        return f"modelFile(url={self.url}, detail={self.detail.value})"


def make_configuration(
    sample_ordering: Optional[SampleOrdering] = None,
    feature_sensitivity: Optional[FeatureSensitivity] = None
) -> ReconstructionConfiguration:
    """Build the session configuration from the parsed options.

    Args:
        sample_ordering: Parsed ordering, or None to keep the default
        feature_sensitivity: Parsed sensitivity, or None to keep the default

    Returns:
        Immutable reconstruction configuration
    """
    kwargs = {}
    if sample_ordering is not None:
        kwargs["sample_ordering"] = sample_ordering
    if feature_sensitivity is not None:
        kwargs["feature_sensitivity"] = feature_sensitivity
    return ReconstructionConfiguration(**kwargs)


def make_request(
    output_filename: Union[str, Path],
    detail: Optional[Detail] = None
) -> ModelFileRequest:
    """Build the model-file request for the given output path.

    Args:
        output_filename: Path of the mesh file the engine should write
        detail: Parsed detail level, or None for the engine default

    Returns:
        Model-file request
    """
    return ModelFileRequest(url=Path(output_filename), detail=detail)
