import torch

from .contract import check_forward_inputs


def gather_points(points: torch.Tensor, index: torch.Tensor) -> torch.Tensor:
    """The batched version of `torch.index_select` along points.

    Args:
        points: [B, M, C]
        index: [B, N], indices into the M points of the same batch.

    Returns:
        torch.Tensor: [B, N, C]
    """
    assert points.size(0) == index.size(0), "Mismatched batch size: {} vs {}".format(
        points.size(0), index.size(0)
    )
    index = index.long().unsqueeze(2).expand(-1, -1, points.size(2))
    return torch.gather(points, 1, index)


def mask_nan_candidates_(distance: torch.Tensor, dim: int) -> torch.Tensor:
    """Replace NaN candidates after the first one by +inf, in place.

    A scan that only replaces its incumbent on strict improvement never
    picks a NaN candidate, except the first one which starts as the
    incumbent. `torch.min` propagates NaN instead, so mask them beforehand.
    """
    if distance.size(dim) > 1:
        tail = distance.narrow(dim, 1, distance.size(dim) - 1)
        tail.masked_fill_(tail.isnan(), float("inf"))
    return distance


def pairwise_sq_distance(xyz1: torch.Tensor, xyz2: torch.Tensor) -> torch.Tensor:
    """Squared distances between all pairs, accumulated in double precision.

    Args:
        xyz1: [B, N, D]
        xyz2: [B, M, D]

    Returns:
        torch.Tensor: [B, N, M], float64.
    """
    xyz1 = xyz1.double()
    xyz2 = xyz2.double()
    b, n, d = xyz1.shape
    m = xyz2.size(1)
    distance = xyz1.new_zeros(b, n, m)
    # Sum coordinate by coordinate to avoid the cancellation of |a|^2 + |b|^2 - 2ab.
    for c in range(d):
        diff = xyz1[:, :, c].unsqueeze(2) - xyz2[:, :, c].unsqueeze(1)
        distance += diff.square()
    return distance


def nn_distance_builtin(xyz1: torch.Tensor, xyz2: torch.Tensor):
    """Bilateral nearest neighbors with builtin operators.

    The whole [B, N, M] distance matrix is materialized,
    so it is only meant for small inputs and testing.

    Args:
        xyz1: [B, N, 6]
        xyz2: [B, M, 6]

    Returns:
        dist1: [B, N], idx1: [B, N], dist2: [B, M], idx2: [B, M]
    """
    check_forward_inputs(xyz1, xyz2)
    distance = pairwise_sq_distance(xyz1, xyz2)
    # torch.min returns the first minimal index
    dist1, idx1 = torch.min(mask_nan_candidates_(distance.clone(), 2), dim=2)
    dist2, idx2 = torch.min(mask_nan_candidates_(distance, 1), dim=1)
    return (
        dist1.to(xyz1.dtype),
        idx1.int(),
        dist2.to(xyz2.dtype),
        idx2.int(),
    )
