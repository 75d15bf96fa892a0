import pytest
import torch
from nndist6d import config
from nndist6d.ops.executors import AcceleratorExecutor, CPUExecutor, get_executor
from nndist6d.ops.native import gather_points, nn_distance_builtin
from nndist6d.utils.misc import random_points, set_random_seed

test_data = [
    (1, 7, 9, 1, 1),
    (2, 128, 64, 16, 2),
    (3, 257, 129, 100, 1),
    (4, 512, 1024, 512, 2),
]


@pytest.mark.parametrize("b, n, m, chunk_size, num_workers", test_data)
def test_cpu_vs_accelerator(b, n, m, chunk_size, num_workers):
    set_random_seed(0)
    xyz1 = random_points(b, n)
    xyz2 = random_points(b, m)
    cpu = CPUExecutor(chunk_size=chunk_size, num_workers=num_workers)
    accel = AcceleratorExecutor(chunk_size=chunk_size)

    outputs_cpu = cpu.forward(xyz1, xyz2)
    outputs_accel = accel.forward(xyz1, xyz2)
    outputs_builtin = nn_distance_builtin(xyz1, xyz2)
    for x, y, z in zip(outputs_cpu, outputs_accel, outputs_builtin):
        torch.testing.assert_close(x, y)
        torch.testing.assert_close(x, z)

    _, idx1, _, idx2 = outputs_cpu
    grad_dist1 = torch.randn(b, n)
    grad_dist2 = torch.randn(b, m)
    grads_cpu = cpu.backward(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
    grads_accel = accel.backward(xyz1, xyz2, grad_dist1, idx1, grad_dist2, idx2)
    for x, y in zip(grads_cpu, grads_accel):
        torch.testing.assert_close(x, y)


def test_backward_builtin():
    """Compare with the gradients of autograd through builtin operators."""
    set_random_seed(1)
    b, n, m = 2, 50, 70
    xyz1 = random_points(b, n, dtype=torch.float64).requires_grad_()
    xyz2 = random_points(b, m, dtype=torch.float64).requires_grad_()
    grad_dist1 = torch.rand(b, n, dtype=torch.float64)
    grad_dist2 = torch.rand(b, m, dtype=torch.float64)

    _, idx1, _, idx2 = nn_distance_builtin(xyz1.detach(), xyz2.detach())
    dist1 = (xyz1 - gather_points(xyz2, idx1)).square().sum(-1)
    dist2 = (xyz2 - gather_points(xyz1, idx2)).square().sum(-1)
    ((dist1 * grad_dist1).sum() + (dist2 * grad_dist2).sum()).backward()

    for executor in [CPUExecutor(), AcceleratorExecutor()]:
        grad_xyz1, grad_xyz2 = executor.backward(
            xyz1.detach(), xyz2.detach(), grad_dist1, idx1, grad_dist2, idx2
        )
        torch.testing.assert_close(grad_xyz1, xyz1.grad)
        torch.testing.assert_close(grad_xyz2, xyz2.grad)


def test_output_dtype():
    xyz1 = random_points(1, 5, dtype=torch.float64)
    xyz2 = random_points(1, 6, dtype=torch.float64)
    for executor in [CPUExecutor(), AcceleratorExecutor()]:
        dist1, idx1, dist2, idx2 = executor.forward(xyz1, xyz2)
        assert dist1.dtype == dist2.dtype == torch.float64
        assert idx1.dtype == idx2.dtype == torch.int32


def test_get_executor():
    assert isinstance(get_executor("cpu"), CPUExecutor)
    assert isinstance(get_executor("accelerator"), AcceleratorExecutor)
    assert isinstance(get_executor("auto", torch.device("cpu")), CPUExecutor)
    assert isinstance(get_executor("auto", torch.device("cuda")), AcceleratorExecutor)

    with config.using_backend("accelerator"):
        executor = get_executor()
        assert isinstance(executor, AcceleratorExecutor)
        assert executor.chunk_size == config.get_config()["chunk_size"]

    with pytest.raises(ValueError):
        get_executor("gpu")


@pytest.mark.skipif(not torch.cuda.is_available(), reason="requires cuda")
def test_cpu_executor_on_cuda():
    set_random_seed(2)
    xyz1 = random_points(2, 100, device="cuda")
    xyz2 = random_points(2, 80, device="cuda")
    outputs_cpu = CPUExecutor().forward(xyz1, xyz2)
    outputs_accel = AcceleratorExecutor().forward(xyz1, xyz2)
    for x, y in zip(outputs_cpu, outputs_accel):
        assert x.device == xyz1.device
        torch.testing.assert_close(x, y)


@pytest.mark.parametrize("executor_cls", [CPUExecutor, AcceleratorExecutor])
@pytest.mark.parametrize("chunk_size", [0, -1])
def test_invalid_chunk_size(executor_cls, chunk_size):
    with pytest.raises(ValueError, match="chunk_size must be positive"):
        executor_cls(chunk_size=chunk_size)


def test_invalid_num_workers():
    with pytest.raises(ValueError, match="num_workers must be positive"):
        CPUExecutor(num_workers=0)


@pytest.mark.parametrize("num_workers", [1, 3, 8])
def test_cpu_num_workers(num_workers, monkeypatch):
    from nndist6d.ops import executors

    pool_sizes = []
    thread_pool_cls = executors.ThreadPoolExecutor

    def thread_pool(max_workers):
        pool_sizes.append(max_workers)
        return thread_pool_cls(max_workers=max_workers)

    monkeypatch.setattr(executors, "ThreadPoolExecutor", thread_pool)

    set_random_seed(3)
    xyz1 = random_points(3, 100)
    xyz2 = random_points(3, 70)
    expected = nn_distance_builtin(xyz1, xyz2)
    outputs = CPUExecutor(chunk_size=16, num_workers=num_workers).forward(xyz1, xyz2)
    for x, y in zip(outputs, expected):
        torch.testing.assert_close(x, y)
    if num_workers == 1:
        assert pool_sizes == []
    else:
        assert pool_sizes == [num_workers]
