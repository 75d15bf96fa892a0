import torch

from .contract import check_rank
from .executors import get_executor


class NNDistanceFunction(torch.autograd.Function):
    @staticmethod
    def forward(ctx, xyz1, xyz2, backend):
        executor = get_executor(backend, xyz1.device)
        dist1, idx1, dist2, idx2 = executor.forward(xyz1, xyz2)
        ctx.save_for_backward(xyz1, xyz2, idx1, idx2)
        ctx.backend = backend
        ctx.mark_non_differentiable(idx1, idx2)
        return dist1, idx1, dist2, idx2

    @staticmethod
    def backward(ctx, grad_dist1, grad_idx1, grad_dist2, grad_idx2):
        xyz1, xyz2, idx1, idx2 = ctx.saved_tensors
        executor = get_executor(ctx.backend, xyz1.device)
        grad_xyz1, grad_xyz2 = executor.backward(
            xyz1,
            xyz2,
            grad_dist1.contiguous(),
            idx1,
            grad_dist2.contiguous(),
            idx2,
        )
        return grad_xyz1, grad_xyz2, None


def nn_distance(
    xyz1: torch.Tensor, xyz2: torch.Tensor, transpose: bool = False, backend=None
):
    """Computes the distance of nearest neighbors for a pair of 6d point clouds.

    Args:
        xyz1: [B, N, 6], the first point cloud. [B, 6, N] if @transpose is True.
        xyz2: [B, M, 6], the second point cloud. [B, 6, M] if @transpose is True.
        transpose: whether to transpose the last two dimensions.
        backend (str, optional): "auto", "cpu" or "accelerator".
            The configured backend is used if None.

    Returns:
        dist1: [B, N], squared distance from first to second.
        idx1: [B, N], int32, nearest neighbor from first to second.
        dist2: [B, M], squared distance from second to first.
        idx2: [B, M], int32, nearest neighbor from second to first.
    """
    if transpose:
        check_rank(xyz1, "xyz1")
        check_rank(xyz2, "xyz2")
        xyz1 = xyz1.transpose(1, 2)
        xyz2 = xyz2.transpose(1, 2)
    xyz1 = xyz1.contiguous()
    xyz2 = xyz2.contiguous()
    return NNDistanceFunction.apply(xyz1, xyz2, backend)


def nn_distance_grad(
    xyz1: torch.Tensor,
    xyz2: torch.Tensor,
    grad_dist1: torch.Tensor,
    idx1: torch.Tensor,
    grad_dist2: torch.Tensor,
    idx2: torch.Tensor,
    backend=None,
):
    """Scatter the gradients of nearest-neighbor distances onto both point clouds.

    Args:
        xyz1: [B, N, 6]
        xyz2: [B, M, 6]
        grad_dist1: [B, N], gradient w.r.t. dist1.
        idx1: [B, N], nearest neighbor from first to second.
        grad_dist2: [B, M], gradient w.r.t. dist2.
        idx2: [B, M], nearest neighbor from second to first.
        backend (str, optional): "auto", "cpu" or "accelerator".

    Returns:
        grad_xyz1: [B, N, 6]
        grad_xyz2: [B, M, 6]
    """
    executor = get_executor(backend, xyz1.device)
    return executor.backward(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
