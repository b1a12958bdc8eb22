"""
Connection password resolution.

Connection configs either carry a literal ``password`` or a ``password_ref``
pointing at a secret store. The only store wired in is the process
environment (``env:NAME``).
"""

import os
import logging
from typing import Any, Dict, Optional

from core.exceptions import SecretResolutionError

logger = logging.getLogger(__name__)

ENV_PREFIX = "env:"


def resolve_password(config: Dict[str, Any], connection_id: Optional[int] = None) -> Optional[str]:
    """
    Resolve the password for a connection config.

    Returns:
        The password, or None when the config carries neither a password
        nor a reference

    Raises:
        SecretResolutionError: If ``password_ref`` is malformed or unset
    """
    ref = config.get("password_ref")
    if not ref:
        return config.get("password")

    if not ref.startswith(ENV_PREFIX):
        raise SecretResolutionError(
            "Unsupported password reference",
            context={"connection_id": connection_id, "password_ref": ref}
        )

    name = ref[len(ENV_PREFIX):]
    value = os.environ.get(name)
    if value is None:
        raise SecretResolutionError(
            f"Password reference {ref} is not set",
            context={"connection_id": connection_id, "password_ref": ref}
        )

    logger.debug(f"Resolved password reference {ref} for connection {connection_id}")
    return value
