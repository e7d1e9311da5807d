"""docvault: client-side document vault tree with optimistic mutations."""

from .api_client import DocVaultClient
from .core.logging_config import setup_logging
from .services import DocumentTreeService, TemplateService

__all__ = ["DocVaultClient", "DocumentTreeService", "TemplateService", "setup_logging"]
