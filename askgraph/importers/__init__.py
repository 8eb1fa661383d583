"""Graph importers for various export formats."""

from .base import BaseImporter
from .sample import SampleImporter
from .roam_json import RoamJSONImporter
from .roam_edn import RoamEDNImporter

__all__ = ["BaseImporter", "SampleImporter", "RoamJSONImporter", "RoamEDNImporter"]
