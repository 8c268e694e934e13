"""
MetOcean Extractor - Resumable Dataset Extraction

This package extracts bounded spatial and temporal slices of remote
metocean datasets (reanalyses, hindcasts, buoy archives) to local files.

Extraction Engine:
- Chunk planning on calendar boundaries and sub-box grids
- Deterministic, atomic unit storage that makes runs resumable
- Retry policy with per-source cooldowns and a bounded rate-limit loop
- Sequential or per-variable fan-out execution with progress estimates

Sources:
- ERA5, HYCOM, NREL wave hindcast, NDBC buoys, WaveWatch III
"""

__version__ = "1.0.0"
__author__ = "MetOcean Extractor Development Team"
