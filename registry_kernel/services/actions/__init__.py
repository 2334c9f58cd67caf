"""Apply steps run when a change request is approved, one module per entity type."""

from registry_kernel.services.actions.common import ApplyContext, ApplyOutcome

__all__ = ["ApplyContext", "ApplyOutcome"]
