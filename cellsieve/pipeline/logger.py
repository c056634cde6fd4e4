"""Stage logging for cellsieve runs."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        # Color a copy so file handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.colors.get(record.levelname, self.colors["RESET"])
        record.levelname = f"{color}{record.levelname}{self.colors['RESET']}"
        return super().format(record)


class PipelineLogger:
    """Stage-level logging for a cellsieve run.

    Console output is colored and concise. A detailed log file
    (``cellsieve_<timestamp>.log``) is written when ``log_dir`` is given.

    Parameters
    ----------
    log_dir : str, optional
        Directory for log files. Console only if None.
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str
        Logger name; module loggers below "cellsieve" propagate here

    Example
    -------
    >>> logger = PipelineLogger("logs/", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_run_start(n_genes=20000, n_cells=5000)
    >>> logger.log_stage_start("qc", "Quality control")
    >>> logger.log_stage_summary("qc", {"cells_kept": 4710})
    >>> logger.log_stage_complete("qc", 12.4)
    >>> logger.close()
    """

    COLORS = {
        "DEBUG": "\033[0;36m",
        "INFO": "\033[0;34m",
        "WARNING": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "CRITICAL": "\033[1;31m",
        "RESET": "\033[0m",
    }
    SEPARATOR = "=" * 80

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_name: str = "cellsieve",
    ):
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_file: Optional[Path] = None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_file = self.log_dir / f"cellsieve_{stamp}.log"

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers = []

    def setup(self) -> None:
        """Attach the console handler and, with a log directory, a file handler.

        The logger stops propagating so records are not printed twice
        when the root logger has handlers of its own.
        """
        handlers = []
        if self.log_file is not None:
            to_file = logging.FileHandler(self.log_file, mode="w", encoding="utf-8")
            to_file.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            handlers.append(to_file)

        to_console = logging.StreamHandler(sys.stdout)
        to_console.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%H:%M:%S",
                colors=self.COLORS,
            )
        )
        handlers.append(to_console)

        for handler in handlers:
            handler.setLevel(self.log_level)
            self.logger.addHandler(handler)
        self.logger.propagate = False

    def close(self) -> None:
        """Flush and detach all handlers; restores propagation."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
        self.logger.propagate = True

    def log_run_start(self, n_genes: int, n_cells: int) -> None:
        """Log the input dimensions at the start of a run."""
        self.logger.info("cellsieve run on %d genes x %d cells", n_genes, n_cells)
        if self.log_file is not None:
            self.logger.info("Detailed log: %s", self.log_file)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a pipeline stage."""
        self.logger.info(self.SEPARATOR)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info(self.SEPARATOR)

    def log_stage_summary(self, stage_id: str, summary: Mapping[str, Any]) -> None:
        """Log the headline numbers of a stage, one ``key: value`` per line."""
        for key, value in summary.items():
            self.logger.info("  [%s] %s: %s", stage_id, key, value)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage.

        Parameters
        ----------
        stage_id : str
            Stage identifier ("qc", "embedding", "clustering")
        duration : float
            Execution time in seconds
        """
        self.logger.info(
            "Stage %s completed successfully in %s", stage_id, self.format_duration(duration)
        )

    def log_stage_error(self, stage_id: str, error: str) -> None:
        self.logger.error("Stage %s failed: %s", stage_id, error)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format a duration as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, secs = divmod(int(seconds), 60)
        if minutes < 60:
            return f"{minutes}m {secs}s"
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h {minutes}m"
