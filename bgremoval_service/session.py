"""
Inference sessions for segmentation models.

A session wraps one loaded model and exposes exactly two calls:
`run(inputs)` returning a flat single-channel probability map, and
`release()` dropping the backing native resources. Two backends are
provided:
 - ONNX Runtime, used for `.onnx` files and raw model bytes,
 - TorchScript, for `.pt` / `.pth` / `.ts` / `.torchscript` exports.

`load_session()` picks the backend and wraps any engine failure in
`ModelLoadError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import numpy as np
import onnxruntime as ort
import torch

from . import config
from .errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

ModelSource = Union[bytes, Path]

TORCHSCRIPT_SUFFIXES = {".pt", ".pth", ".ts", ".torchscript"}
BACKENDS = ("onnx", "torchscript")


@dataclass
class InferenceOutput:
    data: np.ndarray  # flat float32 foreground probabilities, row-major


def _check_inputs(inputs: Sequence[np.ndarray]) -> np.ndarray:
    if len(inputs) != 1:
        raise InferenceError(f"Expected exactly one input tensor, got {len(inputs)}")
    tensor = inputs[0]
    if tensor.ndim != 4 or tensor.shape[0] != 1 or tensor.shape[1] != 3:
        raise InferenceError(f"Input tensor must have shape (1, 3, H, W), got {tuple(tensor.shape)}")
    return tensor


def _select_output(outputs: Any, output_index: int) -> Any:
    """Multi-output models (U2-Net's d0..d6, MODNet's triple) pick one head."""
    if isinstance(outputs, (list, tuple)):
        if not outputs:
            raise InferenceError("Model returned no outputs")
        try:
            return outputs[output_index]
        except IndexError:
            raise InferenceError(
                f"Output index {output_index} out of range for {len(outputs)} outputs"
            ) from None
    return outputs


class InferenceSession:
    """Base contract; subclasses implement `_forward` and `_close`."""

    backend = "abstract"

    def __init__(self, output_index: int = 0):
        self.output_index = output_index
        self.released = False

    def run(self, inputs: Sequence[np.ndarray]) -> InferenceOutput:
        if self.released:
            raise InferenceError("Session has already been released")
        tensor = _check_inputs(inputs)
        try:
            raw = self._forward(tensor)
        except InferenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"{self.backend} inference failed: {exc}") from exc
        data = np.asarray(raw, dtype=np.float32).reshape(-1)
        return InferenceOutput(data=data)

    def release(self) -> None:
        if self.released:
            logger.debug("%s session already released", self.backend)
            return
        self.released = True
        self._close()

    def _forward(self, tensor: np.ndarray) -> Any:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError


class OnnxInferenceSession(InferenceSession):
    backend = "onnx"

    def __init__(self, session: "ort.InferenceSession", output_index: int = 0):
        super().__init__(output_index=output_index)
        self._session = session
        self._input_name = session.get_inputs()[0].name

    def _forward(self, tensor: np.ndarray) -> Any:
        outputs = self._session.run(None, {self._input_name: tensor})
        return _select_output(outputs, self.output_index)

    def _close(self) -> None:
        # ONNX Runtime frees native memory when the session is collected.
        self._session = None


class TorchScriptInferenceSession(InferenceSession):
    backend = "torchscript"

    def __init__(self, module: torch.nn.Module, device: torch.device, output_index: int = 0):
        super().__init__(output_index=output_index)
        self._module = module
        self._device = device

    def _forward(self, tensor: np.ndarray) -> Any:
        with torch.no_grad():
            outputs = self._module(torch.from_numpy(tensor).to(self._device))
        selected = _select_output(outputs, self.output_index)
        return selected.detach().cpu().numpy()

    def _close(self) -> None:
        self._module = None
        if self._device.type == "cuda":
            torch.cuda.empty_cache()


def default_onnx_providers() -> List[str]:
    """Prefer CUDA when ONNX Runtime reports it, else CPU."""
    settings = config.get_settings()
    if settings.onnx_providers:
        return list(settings.onnx_providers)
    available = ort.get_available_providers()
    if "CUDAExecutionProvider" in available:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def default_torch_device() -> torch.device:
    """CUDA -> Apple MPS -> CPU, unless TORCH_DEVICE pins one."""
    settings = config.get_settings()
    if settings.torch_device:
        return torch.device(settings.torch_device)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():  # type: ignore[attr-defined]
        return torch.device("mps")
    return torch.device("cpu")


def _load_onnx(
    model: ModelSource,
    providers: Optional[Sequence[str]],
    output_index: int,
    debug: bool,
) -> OnnxInferenceSession:
    providers = list(providers) if providers else default_onnx_providers()
    options = ort.SessionOptions()
    if debug:
        options.log_severity_level = 0
    source = str(model) if isinstance(model, Path) else model
    session = ort.InferenceSession(source, sess_options=options, providers=providers)
    logger.info("Loaded ONNX model with providers %s", session.get_providers())
    return OnnxInferenceSession(session, output_index=output_index)


def _load_torchscript(
    model: ModelSource,
    device: Optional[Union[str, torch.device]],
    output_index: int,
) -> TorchScriptInferenceSession:
    device = torch.device(device) if device is not None else default_torch_device()
    source = str(model) if isinstance(model, Path) else BytesIO(model)
    module = torch.jit.load(source, map_location=device)
    if hasattr(module, "eval"):
        module.eval()
    logger.info("Loaded TorchScript model on device %s", device)
    return TorchScriptInferenceSession(module, device, output_index=output_index)


def _infer_backend(model: ModelSource) -> Optional[str]:
    if isinstance(model, Path):
        return "torchscript" if model.suffix.lower() in TORCHSCRIPT_SUFFIXES else "onnx"
    return None


def load_session(
    model: ModelSource,
    backend: Optional[str] = None,
    providers: Optional[Sequence[str]] = None,
    device: Optional[Union[str, torch.device]] = None,
    output_index: int = 0,
    debug: bool = False,
) -> InferenceSession:
    """
    Load `model` (raw bytes or a local path) into an inference session.

    The backend follows the file suffix for paths. Raw bytes are tried as
    ONNX first and then as TorchScript.

    Raises:
        ModelLoadError: the model is missing, malformed or unsupported.
    """
    if isinstance(model, (bytearray, memoryview)):
        model = bytes(model)
    if isinstance(model, Path) and not model.is_file():
        raise ModelLoadError(f"Model file not found at {model}")
    if isinstance(model, bytes) and not model:
        raise ModelLoadError("Model data is empty")
    if backend is not None and backend not in BACKENDS:
        raise ModelLoadError(f"Unsupported backend '{backend}'; expected one of {', '.join(BACKENDS)}")

    backend = backend or _infer_backend(model)

    if backend == "torchscript":
        try:
            return _load_torchscript(model, device, output_index)
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Could not load TorchScript model: {exc}") from exc

    try:
        logger.info("Attempting to load ONNX model")
        return _load_onnx(model, providers, output_index, debug)
    except Exception as onnx_error:  # noqa: BLE001
        if backend == "onnx":
            raise ModelLoadError(f"Could not load ONNX model: {onnx_error}") from onnx_error
        logger.info("ONNX load failed, falling back to TorchScript. Error: %s", onnx_error)

    try:
        return _load_torchscript(model, device, output_index)
    except Exception as exc:  # noqa: BLE001
        raise ModelLoadError("Model data is neither a valid ONNX nor TorchScript model") from exc
