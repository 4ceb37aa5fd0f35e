"""Environment loading helpers.

Nothing here runs at import time. The CLI calls ``load_dotenv_if_present``
before reading ``YAPI_BASE_URL`` and ``YAPI_PROJECT_TOKEN``.
"""

from __future__ import annotations

import logging

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


def load_dotenv_if_present(filename: str = ".env") -> bool:
    """Load variables from a dotenv file found from the working directory.

    Variables already present in the process environment win over the file.
    """
    dotenv_path = find_dotenv(filename=filename, usecwd=True)
    if not dotenv_path:
        return False
    load_dotenv(dotenv_path=dotenv_path, override=False)
    logger.info("loaded environment from %s", dotenv_path)
    return True
