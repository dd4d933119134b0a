from .base import Conflict, CycleDetected, FetchFailure, NotFound, Resolution, ResolutionFailure, ResolvedSet
from .core import Resolver

__all__ = [
    "Conflict",
    "CycleDetected",
    "FetchFailure",
    "NotFound",
    "Resolution",
    "ResolutionFailure",
    "ResolvedSet",
    "Resolver",
]
