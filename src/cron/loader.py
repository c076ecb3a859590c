from __future__ import annotations

import importlib
import pkgutil

from src.utils.logging import get_logger

logger = get_logger(__name__)


def discover_and_register_jobs(package: str = "src.cron.jobs") -> list[str]:
    """Import every module in ``package`` so its @cron decorators register. Returns module names."""
    pkg = importlib.import_module(package)
    imported: list[str] = []
    for _, modname, ispkg in pkgutil.iter_modules(pkg.__path__, pkg.__name__ + "."):
        if ispkg:
            continue
        importlib.import_module(modname)
        imported.append(modname)
    logger.info("Discovered cron job modules", modules=imported)
    return imported
