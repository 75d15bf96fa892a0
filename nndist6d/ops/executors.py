"""Executors of the nearest-neighbor search and its gradient scatter.

An executor is selected by a tag ("cpu" or "accelerator") rather than by
the device the tensors live on. Both executors share the same interface:
    forward(xyz1, xyz2) -> (dist1, idx1, dist2, idx2)
    backward(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2) -> (grad_xyz1, grad_xyz2)
and return tensors on the device of the inputs.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import torch

from nndist6d import config
from .contract import POINT_DIM, check_backward_inputs, check_forward_inputs
from .native import gather_points, mask_nan_candidates_

logger = logging.getLogger(__name__)

__all__ = ["CPUExecutor", "AcceleratorExecutor", "EXECUTORS", "get_executor"]


# ---------------------------------------------------------------------------- #
# CPU
# ---------------------------------------------------------------------------- #
class CPUExecutor:
    """Brute-force search with numpy on the host.

    The search is split into (direction, batch, chunk) tasks which write
    disjoint slices of the outputs, so they run on a thread pool of
    `num_workers` threads (numpy releases the GIL).
    """

    name = "cpu"

    def __init__(self, chunk_size=512, num_workers=2):
        self.chunk_size = config.check_positive("chunk_size", chunk_size)
        self.num_workers = config.check_positive("num_workers", num_workers)

    def _zeros(self, shape, dtype):
        return np.zeros(shape, dtype=dtype)

    @staticmethod
    def _search_chunk(query: np.ndarray, key: np.ndarray, dist, idx):
        query = query.astype(np.float64)  # [C, 6]
        key = key.astype(np.float64)  # [M, 6]
        d = np.zeros((query.shape[0], key.shape[0]), dtype=np.float64)
        for c in range(POINT_DIM):
            d += np.square(query[:, c, None] - key[None, :, c])
        # Only the first candidate may win with a NaN distance.
        tail = d[:, 1:]
        tail[np.isnan(tail)] = np.inf
        # np.argmin keeps the first minimum, i.e. the lowest index among ties
        best = np.argmin(d, axis=1)
        idx[:] = best
        dist[:] = d[np.arange(query.shape[0]), best]

    def _search_tasks(self, xyz1: np.ndarray, xyz2: np.ndarray):
        b, n, _ = xyz1.shape
        m = xyz2.shape[1]
        dist = self._zeros((b, n), xyz1.dtype)
        idx = self._zeros((b, n), np.int32)
        tasks = []
        if m == 0:
            return dist, idx, tasks
        for i in range(b):
            for start in range(0, n, self.chunk_size):
                end = min(start + self.chunk_size, n)
                tasks.append(
                    (xyz1[i, start:end], xyz2[i], dist[i, start:end], idx[i, start:end])
                )
        return dist, idx, tasks

    def _run(self, tasks):
        if self.num_workers == 1 or len(tasks) <= 1:
            for task in tasks:
                self._search_chunk(*task)
            return
        with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
            futures = [pool.submit(self._search_chunk, *task) for task in tasks]
            for future in futures:
                future.result()

    def nnsearch(self, xyz1: np.ndarray, xyz2: np.ndarray):
        """For each point in xyz1, find its nearest neighbor in xyz2.

        Args:
            xyz1: [B, N, 6]
            xyz2: [B, M, 6]

        Returns:
            dist: [B, N], squared distance, same dtype as xyz1.
            idx: [B, N], int32.
        """
        dist, idx, tasks = self._search_tasks(xyz1, xyz2)
        self._run(tasks)
        return dist, idx

    def scatter(self, xyz1, xyz2, grad_dist, idx, grad_xyz1, grad_xyz2):
        """Accumulate the gradients of one direction (xyz1 -> xyz2) in place."""
        if xyz2.shape[1] == 0:
            return
        for i in range(xyz1.shape[0]):
            src = xyz1[i].astype(np.float64)  # [N, 6]
            dst = xyz2[i, idx[i]].astype(np.float64)  # [N, 6]
            g = 2.0 * grad_dist[i].astype(np.float64)
            delta = g[:, None] * (src - dst)
            grad_xyz1[i] += delta
            # unbuffered, so repeated indices accumulate
            np.subtract.at(grad_xyz2[i], idx[i].astype(np.int64), delta)

    def forward(self, xyz1: torch.Tensor, xyz2: torch.Tensor):
        check_forward_inputs(xyz1, xyz2)
        device = xyz1.device
        if device.type != "cpu":
            logger.warning(
                "The cpu executor is used for tensors on %s. "
                "Inputs are copied to the host.",
                device,
            )
        xyz1_np = xyz1.detach().cpu().numpy()
        xyz2_np = xyz2.detach().cpu().numpy()

        # Both directions share one pool.
        dist1, idx1, tasks1 = self._search_tasks(xyz1_np, xyz2_np)
        dist2, idx2, tasks2 = self._search_tasks(xyz2_np, xyz1_np)
        self._run(tasks1 + tasks2)

        outputs = (dist1, idx1, dist2, idx2)
        return tuple(torch.from_numpy(x).to(device) for x in outputs)

    def backward(self, xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2):
        b, n, m = check_backward_inputs(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
        device = xyz1.device
        xyz1_np, xyz2_np, grad_dist1_np, idx1_np, grad_dist2_np, idx2_np = (
            x.detach().cpu().numpy()
            for x in (xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
        )

        grad_xyz1 = self._zeros((b, n, POINT_DIM), np.float64)
        grad_xyz2 = self._zeros((b, m, POINT_DIM), np.float64)
        # Both directions write into the same buffers, so they run one after another.
        self.scatter(xyz1_np, xyz2_np, grad_dist1_np, idx1_np, grad_xyz1, grad_xyz2)
        self.scatter(xyz2_np, xyz1_np, grad_dist2_np, idx2_np, grad_xyz2, grad_xyz1)

        grad_xyz1 = torch.from_numpy(grad_xyz1).to(device=device, dtype=xyz1.dtype)
        grad_xyz2 = torch.from_numpy(grad_xyz2).to(device=device, dtype=xyz2.dtype)
        return grad_xyz1, grad_xyz2


# ---------------------------------------------------------------------------- #
# Accelerator
# ---------------------------------------------------------------------------- #
class AcceleratorExecutor:
    """Search with torch kernels on the device of the inputs.

    All (batch, point) pairs of a chunk are processed at once.
    Gradients are scattered with `index_add_`, which uses atomic adds on CUDA.
    """

    name = "accelerator"

    def __init__(self, chunk_size=512, num_workers=None):
        self.chunk_size = config.check_positive("chunk_size", chunk_size)

    def _zeros(self, shape, dtype, device):
        return torch.zeros(shape, dtype=dtype, device=device)

    def nnsearch(self, xyz1: torch.Tensor, xyz2: torch.Tensor):
        b, n, _ = xyz1.shape
        m = xyz2.size(1)
        dist = self._zeros((b, n), xyz1.dtype, xyz1.device)
        idx = self._zeros((b, n), torch.int32, xyz1.device)
        if m == 0:
            return dist, idx

        key = xyz2.double()
        for start in range(0, n, self.chunk_size):
            end = min(start + self.chunk_size, n)
            query = xyz1[:, start:end].double()
            d = key.new_zeros(b, end - start, m)
            for c in range(POINT_DIM):
                d += (query[:, :, c].unsqueeze(2) - key[:, :, c].unsqueeze(1)).square()
            # The first minimal index is returned for ties.
            best_dist, best_idx = torch.min(mask_nan_candidates_(d, 2), dim=2)
            dist[:, start:end] = best_dist.to(dist.dtype)
            idx[:, start:end] = best_idx.int()
        return dist, idx

    def scatter(self, xyz1, xyz2, grad_dist, idx, grad_xyz1, grad_xyz2):
        b, n, _ = xyz1.shape
        m = xyz2.size(1)
        if m == 0 or n == 0:
            return
        src = xyz1.double()
        dst = gather_points(xyz2.double(), idx)  # [B, N, 6]
        g = 2.0 * grad_dist.double()
        delta = g.unsqueeze(2) * (src - dst)
        grad_xyz1 += delta
        flat_idx = idx.long() + torch.arange(b, device=idx.device).unsqueeze(1) * m
        grad_xyz2.view(b * m, POINT_DIM).index_add_(
            0, flat_idx.reshape(-1), delta.reshape(b * n, POINT_DIM).neg()
        )

    @torch.no_grad()
    def forward(self, xyz1: torch.Tensor, xyz2: torch.Tensor):
        check_forward_inputs(xyz1, xyz2)
        dist1, idx1 = self.nnsearch(xyz1, xyz2)
        dist2, idx2 = self.nnsearch(xyz2, xyz1)
        return dist1, idx1, dist2, idx2

    @torch.no_grad()
    def backward(self, xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2):
        b, n, m = check_backward_inputs(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
        device = xyz1.device
        grad_xyz1 = self._zeros((b, n, POINT_DIM), torch.float64, device)
        grad_xyz2 = self._zeros((b, m, POINT_DIM), torch.float64, device)
        self.scatter(xyz1, xyz2, grad_dist1, idx1, grad_xyz1, grad_xyz2)
        self.scatter(xyz2, xyz1, grad_dist2, idx2, grad_xyz2, grad_xyz1)
        return grad_xyz1.to(xyz1.dtype), grad_xyz2.to(xyz2.dtype)


EXECUTORS = {
    CPUExecutor.name: CPUExecutor,
    AcceleratorExecutor.name: AcceleratorExecutor,
}


def get_executor(backend=None, device=None):
    """Build the executor for a backend tag.

    Args:
        backend (str, optional): "auto", "cpu" or "accelerator".
            The configured backend is used if None.
        device (torch.device, optional): the device of the inputs,
            used to resolve "auto".

    Returns:
        CPUExecutor or AcceleratorExecutor
    """
    name = config.resolve_backend(backend, device)
    cfg = config.get_config()
    logger.debug("Dispatch nn_distance on %s to the %s executor", device, name)
    return EXECUTORS[name](chunk_size=cfg["chunk_size"], num_workers=cfg["num_workers"])
