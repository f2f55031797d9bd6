"""Landmark filtering module"""

from .filters import (
    VISIBILITY_THRESHOLD,
    FilterKind,
    KalmanParams,
    OneEuroParams,
    FilterParams,
    FILTER_PRESETS,
    filter_params_from_dict,
    load_filter_presets,
    create_vector_filter,
    gaussian_kernel_1d,
    OneEuroVectorFilter,
    ScalarKalmanFilter,
    KalmanVectorFilter,
    GaussianVectorFilter,
    EuclideanHighPassFilter,
)
from .landmark import Landmark, FrameResults, FilteredLandmark, create_filtered_landmarks
from .face_mesh import FaceMeshGroup, PoseKeyPoints, FACE_MESH_CONNECTIONS, unique_indices

__all__ = [
    "VISIBILITY_THRESHOLD", "FilterKind", "KalmanParams", "OneEuroParams", "FilterParams",
    "FILTER_PRESETS", "filter_params_from_dict", "load_filter_presets",
    "create_vector_filter", "gaussian_kernel_1d",
    "OneEuroVectorFilter", "ScalarKalmanFilter", "KalmanVectorFilter",
    "GaussianVectorFilter", "EuclideanHighPassFilter",
    "Landmark", "FrameResults", "FilteredLandmark", "create_filtered_landmarks",
    "FaceMeshGroup", "PoseKeyPoints", "FACE_MESH_CONNECTIONS", "unique_indices",
]
