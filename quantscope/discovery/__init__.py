"""Discovery subsystem: upstream client and endpoint catalog."""

from .catalog import EndpointCatalog, IndexedEndpoint, search_endpoints, validate_parameters
from .client import DiscoveryClient, DiscoveryError, DiscoveryOfflineError
