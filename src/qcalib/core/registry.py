from typing import Any, TypeVar

T = TypeVar("T")


class ComponentRegistry:
    """
    A simple name -> implementation registry (graph layers, scale methods).
    """

    def __init__(self, name: str):
        self._name = name
        self._registry: dict[str, Any] = {}

    def register(self, name: str) -> Any:
        def decorator(obj: T) -> T:
            if name in self._registry:
                raise ValueError(f"Component '{name}' already registered in {self._name} registry.")
            self._registry[name] = obj
            return obj

        return decorator

    def get(self, name: str) -> Any:
        if name not in self._registry:
            raise ValueError(
                f"Component '{name}' not found in {self._name} registry. Available: {self.names()}"
            )
        return self._registry[name]

    def names(self) -> list[str]:
        return sorted(self._registry)


# Global registries
LAYER_REGISTRY = ComponentRegistry("Layer")
BLOB_SCALE_REGISTRY = ComponentRegistry("BlobScale")
WEIGHT_SCALE_REGISTRY = ComponentRegistry("WeightScale")
