"""Model manager: locate, load, and cache ONNX classification models.

Models are bundled in ``models_dir``. A Hugging Face Hub download is only
attempted when ``allow_download`` is enabled; otherwise the Hub cache is
consulted with ``local_files_only`` so no network I/O happens.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from snaplabel.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str, filename: str | None = None) -> Path:
        """Ensure a model file is available locally and return its path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def load_labels(self, model_name: str) -> list[str]:
        """Return the class labels for a model, in output index order."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class InputSpec:
    """Input contract of a classification model (square RGB, NCHW float32)."""

    size: int = 224
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classification model."""

    name: str
    repo_id: str
    filename: str
    labels_filename: str
    input: InputSpec
    apply_softmax: bool
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenetv2": ModelSpec(
        name="mobilenetv2",
        repo_id="snaplabel/snaplabel-models",
        filename="mobilenetv2-12.onnx",
        labels_filename="imagenet_labels.txt",
        input=InputSpec(),
        apply_softmax=True,
        license="Apache-2.0",
    ),
    "efficientnet_lite4": ModelSpec(
        name="efficientnet_lite4",
        repo_id="snaplabel/snaplabel-models",
        filename="efficientnet-lite4-11.onnx",
        labels_filename="imagenet_labels.txt",
        input=InputSpec(size=224, mean=(0.498, 0.498, 0.498), std=(0.502, 0.502, 0.502)),
        apply_softmax=False,
        license="Apache-2.0",
    ),
    "resnet50": ModelSpec(
        name="resnet50",
        repo_id="snaplabel/snaplabel-models",
        filename="resnet50-v2-7.onnx",
        labels_filename="imagenet_labels.txt",
        input=InputSpec(),
        apply_softmax=True,
        license="Apache-2.0",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry by name."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Locates, loads, and caches ONNX inference sessions.

    Sessions live until ``shutdown``. ``InferenceSession.run`` is safe to call
    from several threads at once, so one session is shared by all requests.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str, filename: str | None = None) -> Path:
        """Return a local path for a model file, downloading it only if allowed.

        ``filename`` defaults to the model's ONNX file; pass the labels
        filename to fetch the labels instead.
        """
        spec = get_spec(model_name)
        filename = filename or spec.filename
        key = f"{model_name}/{filename}"

        cached = self._model_paths.get(key)
        if cached is not None and cached.exists():
            return cached

        bundled = self._models_dir / filename
        if bundled.exists():
            self._model_paths[key] = bundled
            return bundled

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=filename,
                local_dir=str(self._models_dir),
                local_files_only=not self._settings.allow_download,
            )
        )
        self._model_paths[key] = downloaded
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s (providers=%s)", model_name, session.get_providers())
            return session

    def load_labels(self, model_name: str) -> list[str]:
        """Read the labels file for a model: one label per line, blank lines skipped."""
        spec = get_spec(model_name)
        path = self.ensure_downloaded(model_name, spec.labels_filename)
        labels = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
        return [label for label in labels if label]

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
