"""Built-in container image variants."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agent_reactor.utils.exceptions import InvalidVariantError

BASE_TOOLS = [
    "node.js",
    "python3",
    "uv",
    "git",
    "ripgrep",
    "jq",
    "kubectl",
    "github-cli",
    "docker-cli",
]
GO_TOOLS = BASE_TOOLS + ["go", "gopls", "delve", "staticcheck", "golangci-lint"]
FULL_TOOLS = GO_TOOLS + [
    "rust",
    "cargo",
    "java",
    "maven",
    "gradle",
    "mysql-client",
    "postgresql-client",
    "redis-tools",
    "sqlite3",
]
CLOUD_TOOLS = FULL_TOOLS + ["aws-cli", "gcloud", "azure-cli", "terraform"]
K8S_TOOLS = FULL_TOOLS + ["helm", "k9s", "kubectx", "kubens", "kustomize", "stern"]


@dataclass(frozen=True)
class VariantDefinition:
    """A named preset of tools baked into an image."""

    name: str
    description: str
    size: str
    tools: List[str] = field(default_factory=list)


class VariantManager:
    """Registry and validation of image variants."""

    def __init__(self) -> None:
        """Initialize the registry with the built-in variants."""
        self._variants: Dict[str, VariantDefinition] = {
            "base": VariantDefinition(
                "base", "Node.js, Python (with pip + uv), basic development tools", "~500MB",
                list(BASE_TOOLS),
            ),
            "go": VariantDefinition(
                "go", "Base + Go toolchain and utilities", "~800MB", list(GO_TOOLS)
            ),
            "full": VariantDefinition(
                "full", "Go + Rust, Java, database clients", "~1.2GB", list(FULL_TOOLS)
            ),
            "cloud": VariantDefinition(
                "cloud", "Full + cloud CLIs (AWS, GCP, Azure)", "~1.5GB", list(CLOUD_TOOLS)
            ),
            "k8s": VariantDefinition(
                "k8s", "Full + enhanced Kubernetes tools", "~1.4GB", list(K8S_TOOLS)
            ),
        }

    def validate_variant(self, variant: str) -> None:
        """
        Check that a variant exists.

        Raises:
            InvalidVariantError: If the variant is empty or unknown
        """
        if not variant or variant not in self._variants:
            raise InvalidVariantError(variant, self._variants.keys())

    def get(self, variant: str) -> VariantDefinition:
        """Definition for a variant (validated)."""
        self.validate_variant(variant)
        return self._variants[variant]

    def available(self) -> List[str]:
        """Names of all known variants."""
        return sorted(self._variants)

    def describe(self, variant: str) -> str:
        """Description of a variant, or a placeholder for unknown names."""
        definition = self._variants.get(variant)
        return definition.description if definition else "Unknown variant"


# Global instance
_variant_manager: Optional[VariantManager] = None


def get_variant_manager() -> VariantManager:
    """Get or create variant manager instance."""
    global _variant_manager
    if _variant_manager is None:
        _variant_manager = VariantManager()
    return _variant_manager
