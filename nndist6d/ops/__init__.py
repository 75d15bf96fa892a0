from .contract import InvalidArgumentError
from .nn_distance import nn_distance, nn_distance_grad
