"""Provisioning entry points for mirrorkit."""

from .bootstrap import check_prerequisites, configure_primary, provision, teardown

__all__ = [
    "check_prerequisites",
    "configure_primary",
    "provision",
    "teardown",
]
