"""
Service Factory
===============

Registry of job services (image, video, tts, composition).
"""

import logging
from typing import Optional, List, Dict, Type

from .base import JobClient, JobService
from ..core.config import Config, get_config

logger = logging.getLogger(__name__)

# Registry of available job services
_SERVICES: Dict[str, Type[JobService]] = {}


def register_service(name: str):
    """Decorator to register a job service class."""
    def decorator(cls: Type[JobService]):
        cls.name = name.lower()
        _SERVICES[name.lower()] = cls
        return cls
    return decorator


def _ensure_loaded() -> None:
    # Importing the module registers its services
    from . import runpod  # noqa: F401


def get_service(
    name: str,
    client: JobClient,
    config: Optional[Config] = None,
) -> JobService:
    """
    Get a job service bound to a client and its configured endpoint.

    Args:
        name: Service name ('image', 'video', 'tts', 'composition')
        client: Shared JobClient
        config: Configuration (defaults to the global config)

    Returns:
        Configured service instance

    Raises:
        ValueError: If the service name is not recognized
    """
    _ensure_loaded()
    name_lower = name.lower()

    service_class = _SERVICES.get(name_lower)
    if service_class is None:
        raise ValueError(f"Unknown service: {name}")

    config = config or get_config()
    return service_class(client, config.services.get(name_lower), config)


def list_services() -> List[str]:
    """List all registered service names."""
    _ensure_loaded()
    return sorted(_SERVICES.keys())
