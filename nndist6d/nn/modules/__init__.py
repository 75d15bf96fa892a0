"""Wrappers of the nearest-neighbor operator as modules."""

from .loss import *
