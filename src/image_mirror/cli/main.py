"""Main CLI entry point for image-mirror."""  # pragma: no cover

from image_mirror.cli.app import app  # pragma: no cover
from image_mirror.config import get_config  # pragma: no cover
from image_mirror.utils import setup_logging  # pragma: no cover

# Register commands
from image_mirror.cli.commands import status, sync, watch  # pragma: no cover

__all__ = ["app", "status", "sync", "watch"]  # pragma: no cover

# Set up logging when module is imported
_config = get_config()  # pragma: no cover
setup_logging(log_file=_config.log_path, log_level=_config.log_level, console=False)  # pragma: no cover

if __name__ == "__main__":  # pragma: no cover
    app()
