import torch

__all__ = [
    "POINT_DIM",
    "InvalidArgumentError",
    "check_rank",
    "check_forward_inputs",
    "check_backward_inputs",
]

# Each point carries two concatenated 3d coordinates.
POINT_DIM = 6


class InvalidArgumentError(ValueError):
    """Raised when the inputs of nn_distance violate its calling convention."""


def check_rank(xyz: torch.Tensor, name: str):
    if xyz.dim() != 3:
        raise InvalidArgumentError(
            "nn_distance requires {} be of shape (batch, #points, {}), but got {}".format(
                name, POINT_DIM, tuple(xyz.shape)
            )
        )


def _check_points(xyz: torch.Tensor, name: str):
    check_rank(xyz, name)
    if xyz.size(2) != POINT_DIM:
        raise InvalidArgumentError(
            "nn_distance only accepts {}d point set {}, but got {}".format(
                POINT_DIM, name, tuple(xyz.shape)
            )
        )
    if not xyz.is_floating_point():
        raise InvalidArgumentError(
            "nn_distance requires {} be floating point, but got {}".format(
                name, xyz.dtype
            )
        )


def check_forward_inputs(xyz1: torch.Tensor, xyz2: torch.Tensor):
    """Validate two point sets.

    Args:
        xyz1: [B, N, 6]
        xyz2: [B, M, 6]

    Returns:
        tuple: (B, N, M)
    """
    _check_points(xyz1, "xyz1")
    _check_points(xyz2, "xyz2")
    b, n, _ = xyz1.shape
    m = xyz2.size(1)
    if xyz2.size(0) != b:
        raise InvalidArgumentError(
            "nn_distance expects xyz1 and xyz2 have same batch size: {} vs {}".format(
                b, xyz2.size(0)
            )
        )
    if xyz1.device != xyz2.device:
        raise InvalidArgumentError(
            "nn_distance expects xyz1 and xyz2 on the same device: {} vs {}".format(
                xyz1.device, xyz2.device
            )
        )
    return b, n, m


def _check_match(grad_dist, idx, shape, num_targets, device, suffix):
    if tuple(grad_dist.shape) != shape:
        raise InvalidArgumentError(
            "nn_distance_grad requires grad_dist{} be of shape {}, but got {}".format(
                suffix, shape, tuple(grad_dist.shape)
            )
        )
    if tuple(idx.shape) != shape:
        raise InvalidArgumentError(
            "nn_distance_grad requires idx{} be of shape {}, but got {}".format(
                suffix, shape, tuple(idx.shape)
            )
        )
    for name, tensor in [("grad_dist", grad_dist), ("idx", idx)]:
        if tensor.device != device:
            raise InvalidArgumentError(
                "nn_distance_grad expects {}{} on the same device as xyz1: {} vs {}".format(
                    name, suffix, tensor.device, device
                )
            )
    if idx.is_floating_point() or idx.is_complex() or idx.dtype == torch.bool:
        raise InvalidArgumentError(
            "nn_distance_grad requires idx{} be integer, but got {}".format(
                suffix, idx.dtype
            )
        )
    # An empty target set leaves the indices zero-filled and unused.
    if num_targets > 0 and idx.numel() > 0:
        lo, hi = int(idx.min()), int(idx.max())
        if lo < 0 or hi >= num_targets:
            raise InvalidArgumentError(
                "nn_distance_grad requires idx{} in [0, {}), but got [{}, {}]".format(
                    suffix, num_targets, lo, hi
                )
            )


def check_backward_inputs(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2):
    """Validate the inputs of the gradient scatter.

    Args:
        xyz1: [B, N, 6]
        xyz2: [B, M, 6]
        grad_dist1: [B, N]
        idx1: [B, N]
        grad_dist2: [B, M]
        idx2: [B, M]

    Returns:
        tuple: (B, N, M)
    """
    b, n, m = check_forward_inputs(xyz1, xyz2)
    _check_match(grad_dist1, idx1, (b, n), m, xyz1.device, "1")
    _check_match(grad_dist2, idx2, (b, m), n, xyz1.device, "2")
    return b, n, m
