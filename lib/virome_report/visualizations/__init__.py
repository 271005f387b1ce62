"""
Visualization generators for the virome report.

Altair-based charts, written as static SVG/PNG images or as self-contained
HTML files (with embedded Vega-Lite spec).

Modules:
    utils: Theme registration, label helpers and chart saving
    heatmaps: Full and condensed taxon x sample abundance heatmaps
    longitudinal: Per-subject stacked bars over time and study-group bars
"""

from .heatmaps import (
    abundance_heatmap_chart,
    condensed_heatmap,
    full_heatmap,
    prepare_heatmap_data,
)
from .longitudinal import (
    longitudinal_bar_chart,
    longitudinal_bar_charts,
    prepare_longitudinal_data,
    study_group_bar,
    study_group_bar_chart,
)
from .utils import COLORS, register_virome_theme, save_chart

__all__ = [
    "COLORS",
    "abundance_heatmap_chart",
    "condensed_heatmap",
    "full_heatmap",
    "longitudinal_bar_chart",
    "longitudinal_bar_charts",
    "prepare_heatmap_data",
    "prepare_longitudinal_data",
    "register_virome_theme",
    "save_chart",
    "study_group_bar",
    "study_group_bar_chart",
]
