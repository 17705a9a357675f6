"""
Handlers — everything that touches the host.

One Handler per action kind, one ProbeChecker per probe kind, all
dispatched through the HandlerRegistry.
"""

from provisioner.handlers.base import ExecutionContext, Handler, ProbeChecker, ProbeContext
from provisioner.handlers.mock import MockHandler, MockProbe
from provisioner.handlers.registry import HandlerRegistry, default_registry

__all__ = [
    "ExecutionContext",
    "Handler",
    "HandlerRegistry",
    "MockHandler",
    "MockProbe",
    "ProbeChecker",
    "ProbeContext",
    "default_registry",
]
