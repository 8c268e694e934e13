"""
Unit Store

Maps fetch units to deterministic output files and is the only component that
writes to the output tree. The presence of a unit's final file is the sole
record that the unit is done; there is no manifest.

Layout:
    <root>/<source>/<location tag>/<time tag>[_<variable>][_d<level>of<levels>]<suffix>

Level files of a depth profile carry the profile's level count, so a
re-run knows the full set of levels from the directory alone.

Writes go to ``<final name>.part`` first and are renamed into place only once
the payload has been written completely, so an interrupted write never makes
``exists`` return True.
"""

import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any, Optional, Union

import xarray as xr

from .fetch_units import FetchUnit, depth_level_tag

logger = logging.getLogger(__name__)

TEMPORARY_SUFFIX = '.part'


class UnitStore:
    """
    Deterministic file store for fetch unit payloads.

    Attributes:
        root (Path): Root output directory
        suffix (str): File suffix of stored payloads (e.g. '.nc')
    """

    def __init__(self, root: Union[str, Path], suffix: str = '.nc'):
        """
        Args:
            root: Root output directory, created if missing
            suffix: File suffix for payloads of this store
        """
        self.root = Path(root)
        self.suffix = suffix if suffix.startswith('.') else f'.{suffix}'
        self.root.mkdir(parents=True, exist_ok=True)

    def _directory_and_stem(self, unit: FetchUnit):
        stem = unit.time_tag
        if unit.variable:
            stem = f"{stem}_{unit.variable}"
        return self.root / unit.source / unit.location_tag, stem

    def path_for(self, unit: FetchUnit) -> Path:
        """Return the final path of a unit; a pure function of the unit's identity."""
        directory, name = self._directory_and_stem(unit)
        if unit.depth_level is not None:
            name = f"{name}_{depth_level_tag(unit.depth_level, unit.depth_levels)}"
        return directory / f"{name}{self.suffix}"

    def temporary_path_for(self, unit: FetchUnit) -> Path:
        final = self.path_for(unit)
        return final.with_name(final.name + TEMPORARY_SUFFIX)

    def exists(self, unit: FetchUnit) -> bool:
        """Check whether a unit's output has been materialized."""
        return self.path_for(unit).is_file()

    def write(self, unit: FetchUnit, payload: Any) -> Path:
        """
        Atomically write a unit's payload.

        Supported payloads:
            - bytes / str: written as-is
            - xarray.Dataset: written as NetCDF
            - dict / list: written as JSON
            - pathlib.Path: an already downloaded file, moved into place

        Args:
            unit: Unit being stored
            payload: Parsed payload returned by the source adapter

        Returns:
            Path: Final path of the stored payload

        Raises:
            TypeError: If the payload type is not supported
        """
        final_path = self.path_for(unit)
        temp_path = self.temporary_path_for(unit)
        final_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._write_payload(temp_path, payload)
            os.replace(temp_path, final_path)
        except BaseException:
            # Leave nothing behind that could be mistaken for output
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.debug(f"Stored {unit.unit_id} at {final_path}")
        return final_path

    def _write_payload(self, temp_path: Path, payload: Any) -> None:
        if isinstance(payload, bytes):
            temp_path.write_bytes(payload)
        elif isinstance(payload, str):
            temp_path.write_text(payload)
        elif isinstance(payload, xr.Dataset):
            payload.to_netcdf(temp_path)
        elif isinstance(payload, (dict, list)):
            with open(temp_path, 'w') as f:
                json.dump(payload, f, indent=2, default=str)
        elif isinstance(payload, Path):
            shutil.move(str(payload), str(temp_path))
        else:
            raise TypeError(f"Unsupported payload type for unit store: {type(payload).__name__}")

    def remove(self, unit: FetchUnit) -> bool:
        """Delete a unit's output so the next run fetches it again."""
        path = self.path_for(unit)
        if path.exists():
            path.unlink()
            return True
        return False

    def recorded_depth_levels(self, unit: FetchUnit) -> Optional[int]:
        """
        Level count of a depth profile as recorded in its level file names.

        Args:
            unit: Depth profile unit

        Returns:
            The level count, or None when no level of the profile was stored yet
        """
        directory, stem = self._directory_and_stem(unit)
        if not directory.is_dir():
            return None

        pattern = re.compile(rf"{re.escape(stem)}_d(\d+)of(\d+){re.escape(self.suffix)}")
        totals = set()
        for path in directory.iterdir():
            match = pattern.fullmatch(path.name)
            if match:
                totals.add(int(match.group(2)))

        if len(totals) > 1:
            logger.warning(f"Level files of {unit.unit_id} disagree on the level count: {sorted(totals)}")
        return max(totals) if totals else None

    def clean_partial_files(self, source: str) -> int:
        """Remove temporary files left under a source's directory by interrupted runs."""
        source_root = self.root / source
        if not source_root.is_dir():
            return 0

        removed = 0
        for partial in source_root.rglob(f'*{TEMPORARY_SUFFIX}'):
            partial.unlink()
            removed += 1
        if removed:
            logger.info(f"Removed {removed} partial files under {source_root}")
        return removed
