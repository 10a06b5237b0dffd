"""
Extension actuator that deploys csi-driver-lvm and tracks an Extension resource.
"""

__all__ = [
    "actuator",
    "config",
    "exceptions",
    "health",
    "image",
    "managedresources",
    "manifest",
    "merge",
    "resources",
]
