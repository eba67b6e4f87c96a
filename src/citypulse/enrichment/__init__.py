"""Enrichment gateway around the external AI collaborator."""

from citypulse.enrichment.gateway import EnrichmentCollaborator, EnrichmentGateway
from citypulse.outcome import Outcome

__all__ = ["EnrichmentCollaborator", "EnrichmentGateway", "Outcome"]
