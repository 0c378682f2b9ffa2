"""Stand-ins for the inference engine used across the test suite."""

import io
from typing import Callable, List

import numpy as np
from PIL import Image

from bgremoval_service.errors import InferenceError
from bgremoval_service.session import InferenceOutput


class StubSession:
    """Records calls and returns a mask sized to the input tensor."""

    def __init__(self, mask_fn: Callable[[int, int], np.ndarray], fail: bool = False):
        self.mask_fn = mask_fn
        self.fail = fail
        self.run_calls: List[np.ndarray] = []
        self.release_count = 0

    def run(self, inputs):
        self.run_calls.append(inputs[0])
        if self.fail:
            raise InferenceError("boom")
        _, _, height, width = inputs[0].shape
        mask = np.asarray(self.mask_fn(width, height), dtype=np.float32)
        return InferenceOutput(data=mask.reshape(-1))

    def release(self):
        self.release_count += 1


class StubFactory:
    """Session factory handing out one StubSession and recording its arguments."""

    def __init__(self, session: StubSession):
        self.session = session
        self.calls = []

    def __call__(self, model, **engine_options):
        self.calls.append((model, engine_options))
        return self.session


def constant_mask(value: float) -> Callable[[int, int], np.ndarray]:
    return lambda width, height: np.full((height, width), value, dtype=np.float32)


def checkerboard_mask(width: int, height: int) -> np.ndarray:
    yy, xx = np.indices((height, width))
    return ((xx + yy) % 2).astype(np.float32)


def make_factory(mask_fn=None, fail: bool = False) -> StubFactory:
    return StubFactory(StubSession(mask_fn or constant_mask(1.0), fail=fail))


def decode_png(data: bytes) -> np.ndarray:
    return np.array(Image.open(io.BytesIO(data)).convert("RGBA"))
