"""
Workspace - Centralized file path management for pipeline runs.

Every stage writes into its own numbered subdirectory of the output directory,
so the directory listing reflects pipeline stage order, and every task writes
only to paths derived from its own key.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

# Stage subdirectories in pipeline order.
STAGE_DIRS: Dict[str, str] = {
    "genome": "00_genome",
    "unmapped_bam": "01_unmapped_bam",
    "marked_adapters": "02_marked_adapters",
    "cleaned_fastq": "03_cleaned_fastq",
    "aligned": "04_aligned",
    "lane_bam": "05_lane_bam",
    "sample_bam": "06_sample_bam",
    "windows": "07_windows",
    "window_vcf": "08_window_vcf",
    "merged_vcf": "09_merged_vcf",
    "snps": "10_snps",
    "filtered": "11_filtered",
}


class Workspace:
    """Manages all file paths for a pipeline run.

    Attributes
    ----------
    output_dir : Path
        Main output directory
    base_name : str
        Base name for final output files
    """

    def __init__(self, output_dir: Path, base_name: str):
        """Initialize workspace with output directory and base name.

        Parameters
        ----------
        output_dir : Path
            Main output directory path
        base_name : str
            Base name for final output files
        """
        self.output_dir = Path(output_dir)
        self.base_name = base_name

        self.output_dir.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Workspace initialized: output_dir={self.output_dir}")

    def stage_dir(self, stage: str) -> Path:
        """Return (and create) the numbered directory for a pipeline stage.

        Parameters
        ----------
        stage : str
            Stage identifier, a key of ``STAGE_DIRS``

        Returns
        -------
        Path
            The stage directory

        Raises
        ------
        KeyError
            If the stage is unknown
        """
        path = self.output_dir / STAGE_DIRS[stage]
        path.mkdir(exist_ok=True)
        return path

    def stage_path(self, stage: str, name: str) -> Path:
        """Generate a file path inside a stage directory."""
        return self.stage_dir(stage) / name

    def get_output_path(self, suffix: str, extension: str = ".vcf") -> Path:
        """Generate a final output path, e.g. ``<base>.pass.vcf``."""
        return self.output_dir / f"{self.base_name}{suffix}{extension}"

    def cleanup(self, keep_intermediates: bool = True) -> None:
        """Optionally remove the stage directories.

        Parameters
        ----------
        keep_intermediates : bool
            If False, remove the numbered stage directories; final outputs
            in the output directory itself are kept
        """
        if keep_intermediates:
            return
        try:
            for dirname in STAGE_DIRS.values():
                path = self.output_dir / dirname
                if path.exists():
                    shutil.rmtree(path)
                    logger.debug(f"Removed stage directory: {path}")
        except OSError as e:
            logger.warning(f"Error during cleanup: {e}")

    def __repr__(self) -> str:
        """Return string representation of the workspace."""
        return f"Workspace(output_dir='{self.output_dir}', base_name='{self.base_name}')"
