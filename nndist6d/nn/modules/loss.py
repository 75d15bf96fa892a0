import torch
from torch import nn

from .. import functional as F

__all__ = ["ChamferLoss"]


class ChamferLoss(nn.Module):
    """Bilateral nearest-neighbor (Chamfer) loss between 6d point clouds."""

    def __init__(self, reduction="mean", backend=None):
        super().__init__()
        if reduction not in ["mean", "sum", "none"]:
            raise ValueError("Unknown reduction: {}".format(reduction))
        self.reduction = reduction
        self.backend = backend

    def forward(self, xyz1: torch.Tensor, xyz2: torch.Tensor) -> torch.Tensor:
        return F.chamfer_distance(
            xyz1, xyz2, reduction=self.reduction, backend=self.backend
        )

    def extra_repr(self):
        return "reduction={}, backend={}".format(self.reduction, self.backend)
