"""host-provisioner — declarative, idempotent host provisioning."""

__version__ = "0.1.0"
