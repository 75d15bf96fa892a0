import random

import numpy as np
import torch


def set_random_seed(seed, deterministic=False):
    """Seed python, numpy and torch (including all cuda devices)."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    if deterministic:
        # index_add_ on cuda is nondeterministic unless this is set
        torch.use_deterministic_algorithms(True)


def random_points(batch_size, num_points, dim=6, dtype=torch.float32, device="cpu"):
    """Gaussian point clouds of shape [B, N, D], mainly for tests and profiling."""
    return torch.randn(batch_size, num_points, dim, dtype=dtype, device=device)
