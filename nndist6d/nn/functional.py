from nndist6d.ops.nn_distance import nn_distance


# ---------------------------------------------------------------------------- #
# Losses
# ---------------------------------------------------------------------------- #
def chamfer_distance(xyz1, xyz2, reduction="mean", backend=None):
    """Chamfer distance between two batches of 6d point clouds.

    Args:
        xyz1 (torch.Tensor): [B, N, 6]
        xyz2 (torch.Tensor): [B, M, 6]
        reduction (str): "mean", "sum" or "none"
        backend (str, optional): backend of the nearest-neighbor search

    Returns:
        torch.Tensor: scalar, or [B] if @reduction is "none"
    """
    dist1, _, dist2, _ = nn_distance(xyz1, xyz2, backend=backend)
    # [B]
    loss = dist1.mean(1) + dist2.mean(1)
    if reduction == "mean":
        return loss.mean()
    elif reduction == "sum":
        return loss.sum()
    elif reduction == "none":
        return loss
    else:
        raise ValueError("Unknown reduction: {}".format(reduction))
