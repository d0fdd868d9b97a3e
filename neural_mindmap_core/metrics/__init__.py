from .merge_tracker import MergeTracker

__all__ = ["MergeTracker"]
