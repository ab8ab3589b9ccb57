"""
Cleaning stages.

Importing this package registers every stage variant:

    size_filter -> header_standardizer -> static_flight_detector
    -> static_start_trimmer -> static_sample_remover
    -> quaternion_column_remover -> anomaly_detector -> resequencer
"""

from .base import (
    CORPUS_SCOPE,
    FILE_SCOPE,
    CorpusItem,
    StageContext,
    StageSpec,
    check_stage_order,
    get_stage,
    list_stages,
    register_stage,
)
from .size_filter import apply_size_filter
from .headers import apply_header_standardizer, build_rename_map, normalize_name
from .static_flight import apply_static_flight_detector
from .static_start import apply_static_start_trimmer, find_motion_start
from .static_samples import apply_static_sample_remover
from .quaternion import apply_quaternion_column_remover
from .anomaly import AnomalyReport, apply_anomaly_detector, z_scores
from .resequence import apply_resequencer, render_name

__all__ = [
    "CORPUS_SCOPE",
    "FILE_SCOPE",
    "CorpusItem",
    "StageContext",
    "StageSpec",
    "check_stage_order",
    "get_stage",
    "list_stages",
    "register_stage",
    "apply_size_filter",
    "apply_header_standardizer",
    "build_rename_map",
    "normalize_name",
    "apply_static_flight_detector",
    "apply_static_start_trimmer",
    "find_motion_start",
    "apply_static_sample_remover",
    "apply_quaternion_column_remover",
    "AnomalyReport",
    "apply_anomaly_detector",
    "z_scores",
    "apply_resequencer",
    "render_name",
]
