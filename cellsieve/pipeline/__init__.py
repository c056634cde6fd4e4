"""Pipeline orchestration module.

Provides a single YAML configuration for the whole run and a runner that
chains QC, embedding and clustering with stage logging.

Example Usage
-------------
>>> from cellsieve.pipeline import SieveConfig, SievePipeline, PipelineLogger
>>> config = SieveConfig.from_yaml("cellsieve.yaml")
>>> logger = PipelineLogger("logs/")
>>> logger.setup()
>>> result = SievePipeline(config, logger).run(counts, subsets={"Mito": mito})
"""

from .config import EmbeddingConfig, SieveConfig
from .logger import ColoredFormatter, PipelineLogger
from .runner import PipelineResult, SievePipeline

__all__ = [
    # Config
    "EmbeddingConfig",
    "SieveConfig",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "PipelineResult",
    "SievePipeline",
]
