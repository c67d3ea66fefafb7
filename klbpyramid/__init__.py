"""
klbpyramid
==========

Multi-resolution pyramids for KLB microscopy datasets
"""

import logging
import os

from klbpyramid.builder import PyramidBuilder
from klbpyramid.dataset import load_description
from klbpyramid.resolver import PartitionResolver

__all__ = ["PartitionResolver", "PyramidBuilder", "load_description"]


def _configure_logging():
    """Configure logging for klbpyramid."""
    level = os.environ.get("KLBPYRAMID_LOG_LEVEL", logging.INFO)
    if str(level).isdigit():
        level = int(level)
    klbpyramid_logger = logging.getLogger(__name__)
    klbpyramid_logger.setLevel(level)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        logging.Formatter(fmt="%(levelname)s:%(name)s:%(message)s")
    )
    klbpyramid_logger.addHandler(stream_handler)


_configure_logging()
