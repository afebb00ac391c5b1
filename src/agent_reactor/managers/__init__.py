"""Manager modules for container lifecycle orchestration."""

from .container_manager import ContainerEngine, DockerContainerManager
from .identity_resolver import ArchitectureDetector, IdentityResolver, project_hash
from .maintenance_manager import MaintenanceManager
from .mount_manager import MountManager
from .recovery_manager import (
    RecoveryManager,
    is_acceptable_stop_error,
    is_retryable_build_error,
    is_retryable_start_error,
)
from .session_manager import SessionManager
from .variant_manager import VariantDefinition, VariantManager, get_variant_manager

__all__ = [
    "ArchitectureDetector",
    "ContainerEngine",
    "DockerContainerManager",
    "IdentityResolver",
    "MaintenanceManager",
    "MountManager",
    "RecoveryManager",
    "SessionManager",
    "VariantDefinition",
    "VariantManager",
    "get_variant_manager",
    "is_acceptable_stop_error",
    "is_retryable_build_error",
    "is_retryable_start_error",
    "project_hash",
]
