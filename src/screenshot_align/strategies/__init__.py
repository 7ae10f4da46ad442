from .base import SearchContext, Strategy
from .cropped import cropped_region_search
from .edges import edge_based_search
from .features import count_inliers, decompose_homography, feature_based_search
from .multiscale import grid_search, multi_scale_search
from .phase import phase_correlation_fallback
from .subimage import direct_subimage_search, reverse_subimage_search, search_either_way

__all__ = [
    "SearchContext",
    "Strategy",
    "count_inliers",
    "cropped_region_search",
    "decompose_homography",
    "direct_subimage_search",
    "edge_based_search",
    "feature_based_search",
    "grid_search",
    "multi_scale_search",
    "phase_correlation_fallback",
    "reverse_subimage_search",
    "search_either_way",
]
