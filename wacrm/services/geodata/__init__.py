"""Government open-data lookups."""

from wacrm.services.geodata.ibge import GeoDataService, get_geodata_service, normalize_ufs

__all__ = ["GeoDataService", "get_geodata_service", "normalize_ufs"]
