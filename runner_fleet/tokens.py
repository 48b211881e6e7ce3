"""Runner authentication token sources."""

from enum import Enum
from typing import Dict, Mapping, Optional, Protocol, Tuple

import structlog

logger = structlog.get_logger()


class TokenSource(str, Enum):
    """Where the resolved token came from."""

    DIRECT = "direct"
    PARAMETER = "parameter"
    UNRESOLVED = "unresolved"
    CONFLICT = "conflict"


class ParameterStore(Protocol):
    """Managed secret / parameter collaborator."""

    def get_parameter(self, name: str) -> Optional[str]:
        ...


class MappingParameterStore:
    """Parameter store backed by values known at configuration time."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def get_parameter(self, name: str) -> Optional[str]:
        return self._values.get(name)


def resolve_token(
    direct: Optional[str],
    parameter: Optional[str],
    store: Optional[ParameterStore],
) -> Tuple[str, TokenSource]:
    """Resolve the runner token from its direct value and parameter reference.

    Args:
        direct: Token given inline in the declaration
        parameter: Name of the parameter holding the token
        store: Parameter store used to look the reference up

    Returns:
        Tuple of (token, source). The token is empty when nothing resolved.
    """
    looked_up = ""
    if parameter:
        if store is None:
            logger.warning("No parameter store available for token lookup", parameter=parameter)
        else:
            looked_up = store.get_parameter(parameter) or ""

    direct = direct or ""

    if looked_up and direct and direct != looked_up:
        return direct, TokenSource.CONFLICT
    if looked_up:
        return looked_up, TokenSource.PARAMETER
    if direct:
        return direct, TokenSource.DIRECT
    return "", TokenSource.UNRESOLVED
