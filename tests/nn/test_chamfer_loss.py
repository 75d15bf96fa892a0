import pytest
import torch
from nndist6d.nn import ChamferLoss
from nndist6d.nn.functional import chamfer_distance
from nndist6d.ops.native import nn_distance_builtin
from nndist6d.utils.misc import random_points, set_random_seed


def chamfer_distance_builtin(xyz1, xyz2):
    """built-in operators"""
    dist1, _, dist2, _ = nn_distance_builtin(xyz1, xyz2)
    return dist1.mean(1) + dist2.mean(1)


@pytest.mark.parametrize("backend", ["cpu", "accelerator"])
@pytest.mark.parametrize("reduction", ["mean", "sum", "none"])
def test_chamfer_distance(backend, reduction):
    set_random_seed(0)
    xyz1 = random_points(4, 64)
    xyz2 = random_points(4, 96)

    expected = chamfer_distance_builtin(xyz1, xyz2)
    if reduction == "mean":
        expected = expected.mean()
    elif reduction == "sum":
        expected = expected.sum()
    actual = chamfer_distance(xyz1, xyz2, reduction=reduction, backend=backend)
    torch.testing.assert_close(actual, expected)


def test_chamfer_loss():
    xyz1 = torch.zeros(2, 1, 6, requires_grad=True)
    xyz2 = torch.zeros(2, 1, 6)
    xyz2[:, 0, 0] = 1.0

    loss_fn = ChamferLoss(backend="cpu")
    loss = loss_fn(xyz1, xyz2)
    # Each direction contributes a squared distance of 1.
    assert loss.item() == 2.0

    loss.backward()
    expected = torch.zeros(2, 1, 6)
    # d/dx of 0.5 * ((x - 1)^2 + (x - 1)^2) at x = 0
    expected[:, 0, 0] = -2.0
    torch.testing.assert_close(xyz1.grad, expected)
    assert "reduction=mean" in repr(loss_fn)


def test_unknown_reduction():
    with pytest.raises(ValueError):
        ChamferLoss(reduction="max")
    with pytest.raises(ValueError):
        chamfer_distance(torch.zeros(1, 2, 6), torch.zeros(1, 2, 6), reduction="max")
