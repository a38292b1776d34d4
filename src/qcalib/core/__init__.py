from .registry import BLOB_SCALE_REGISTRY, LAYER_REGISTRY, WEIGHT_SCALE_REGISTRY, ComponentRegistry

__all__ = ["BLOB_SCALE_REGISTRY", "LAYER_REGISTRY", "WEIGHT_SCALE_REGISTRY", "ComponentRegistry"]
