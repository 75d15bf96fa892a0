"""Runtime configuration of the nearest-neighbor operator.

Defaults can be overridden with environment variables:
    NNDIST6D_BACKEND: "auto", "cpu" or "accelerator".
    NNDIST6D_CHUNK_SIZE: the number of source points searched at a time.
    NNDIST6D_NUM_WORKERS: threads used by the cpu executor.
"""

import contextlib
import os

import torch

BACKENDS = ("auto", "cpu", "accelerator")


def _check_backend(name):
    if name not in BACKENDS:
        raise ValueError(
            "Unknown backend {!r}. Expected one of {}.".format(name, BACKENDS)
        )
    return name


def check_positive(name, value):
    if value <= 0:
        raise ValueError("{} must be positive, but got {}".format(name, value))
    return int(value)


_config = {
    "backend": _check_backend(os.getenv("NNDIST6D_BACKEND", "auto")),
    "chunk_size": check_positive(
        "chunk_size", int(os.getenv("NNDIST6D_CHUNK_SIZE", "512"))
    ),
    "num_workers": check_positive(
        "num_workers", int(os.getenv("NNDIST6D_NUM_WORKERS", "2"))
    ),
}


def get_config() -> dict:
    """Return a copy of the current configuration."""
    return dict(_config)


def set_backend(name: str):
    _config["backend"] = _check_backend(name)


def set_chunk_size(chunk_size: int):
    _config["chunk_size"] = check_positive("chunk_size", chunk_size)


def set_num_workers(num_workers: int):
    _config["num_workers"] = check_positive("num_workers", num_workers)


@contextlib.contextmanager
def using_backend(name: str):
    """Temporarily switch the backend, e.g. `with using_backend("cpu"): ...`."""
    _check_backend(name)
    prev = _config["backend"]
    _config["backend"] = name
    try:
        yield
    finally:
        _config["backend"] = prev


def resolve_backend(backend=None, device=None) -> str:
    """Resolve a backend tag to a concrete executor name.

    Args:
        backend (str, optional): "auto", "cpu" or "accelerator".
            Falls back to the configured backend if None.
        device (torch.device, optional): the device of the inputs.

    Returns:
        str: "cpu" or "accelerator".
    """
    if backend is None:
        backend = _config["backend"]
    _check_backend(backend)
    if backend == "auto":
        if device is not None and torch.device(device).type == "cuda":
            backend = "accelerator"
        else:
            backend = "cpu"
    return backend
