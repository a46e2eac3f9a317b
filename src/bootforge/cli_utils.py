"""CLI utility functions for bootforge.

This module provides common utilities used across CLI commands including:
- Logging setup
- Work directory and cell resolution
- Error handling and formatting
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from bootforge.config import BuildConfig, ConfigError, load_config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_CONFIG = Path("build-config.json")
DEFAULT_WORK_DIR = Path("work")


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> None:
    """Setup logging for CLI commands.

    Args:
        log_file: Also log to this rotating file (INFO and above)
        verbose: Log DEBUG to stderr instead of WARNING
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)


def resolve_work_dir(work_dir: Optional[Path]) -> Path:
    """Work directory from the flag, BOOTFORGE_WORK_DIR, or ./work."""
    if work_dir is not None:
        return Path(work_dir)
    env_dir = os.environ.get("BOOTFORGE_WORK_DIR")
    return Path(env_dir) if env_dir else DEFAULT_WORK_DIR


def split_list(value: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated flag value ('static,linux-native')."""
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


class ConfigLoader:
    """Loads the build config and reports its warnings."""

    @staticmethod
    def load(config_path: Path) -> BuildConfig:
        """Load and validate a build config, printing warnings.

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ConfigError: If the config is invalid
        """
        config = load_config(config_path)
        for warning in config.validate().warnings:
            ErrorFormatter.print_warning(warning)
        return config

    @staticmethod
    def select_arch(config: BuildConfig, arch: Optional[str]) -> str:
        """Architecture for a single-cell command.

        Raises:
            ConfigError: If --arch is missing and the config lists several
        """
        if arch:
            return arch
        if len(config.architectures) == 1:
            return config.architectures[0]
        raise ConfigError(
            f"--arch is required (config lists: {', '.join(config.architectures) or 'none'})"
        )


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message to stderr.

        Args:
            title: Error title (e.g., "Build failed")
            message: Error message details
        """
        print(file=sys.stderr)
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}", file=sys.stderr)
        print(file=sys.stderr)
        print(message, file=sys.stderr)
        print(file=sys.stderr)

    @staticmethod
    def print_success(message: str) -> None:
        """Print formatted success message."""
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        """Print formatted warning message to stderr."""
        print(f"{ErrorFormatter.YELLOW}⚠ {message}{ErrorFormatter.RESET}", file=sys.stderr)

    @staticmethod
    def handle_file_not_found(error: FileNotFoundError) -> None:
        """Handle FileNotFoundError with standard formatting."""
        ErrorFormatter.print_error("Error: File not found", str(error))
        print(
            "Run from a directory containing build-config.json or pass --config.",
            file=sys.stderr,
        )
        sys.exit(1)

    @staticmethod
    def handle_config_error(error: ConfigError) -> None:
        """Handle ConfigError with standard formatting."""
        ErrorFormatter.print_error("Error: Invalid configuration", str(error))
        sys.exit(1)

    @staticmethod
    def handle_stage_error(title: str, error: Exception) -> None:
        """Handle a pipeline stage failure with standard formatting."""
        ErrorFormatter.print_error(title, str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:", file=sys.stderr)
            print(traceback.format_exc(), file=sys.stderr)

        sys.exit(1)
