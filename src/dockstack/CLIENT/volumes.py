"""
Docker Volumes API
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import VolumeNotFound

logger = logging.getLogger(__name__)


class Volume:
    """Docker Volume object"""

    def __init__(self, attrs: Dict[str, Any], collection: "VolumeCollection"):
        self.attrs = attrs
        self.collection = collection

    @property
    def name(self) -> str:
        return self.attrs.get("Name", "")

    id = name

    @property
    def labels(self) -> Dict[str, str]:
        return self.attrs.get("Labels") or {}

    def __repr__(self):
        return f"<Volume: {self.name}>"

    def inspect(self) -> Dict[str, Any]:
        return self.collection.inspect(self.name)

    def reload(self) -> "Volume":
        self.attrs = self.inspect()
        return self

    def remove(self, force: bool = False):
        self.collection.remove(self.name, force=force)


class VolumeCollection:
    """Docker Volumes Collection"""

    def __init__(self, client):
        self.client = client

    @property
    def http(self):
        return self.client.http

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Volume]:
        params = {"filters": filters} if filters else None
        data = self.http.request("GET", "/volumes", params=params) or {}
        return [Volume(v, self) for v in data.get("Volumes") or []]

    def get(self, name: str) -> Volume:
        """
        Raises:
            VolumeNotFound: If the volume does not exist
        """
        return Volume(self.inspect(name), self)

    def inspect(self, name: str) -> Dict[str, Any]:
        return self.http.request("GET", f"/volumes/{name}", not_found=VolumeNotFound)

    def create(self, name: Optional[str] = None, driver: str = "local",
               driver_opts: Optional[Dict[str, str]] = None,
               labels: Optional[Dict[str, str]] = None) -> Volume:
        """
        Create volume; the daemon picks a name when none is given.
        """
        config = {
            "Name": name or "",
            "Driver": driver,
            "DriverOpts": dict(driver_opts or {}),
            "Labels": dict(labels or {}),
        }
        data = self.http.request("POST", "/volumes/create", data=config)
        logger.info("Created volume %s", (data or {}).get("Name", name))
        return Volume(data or config, self)

    def remove(self, name: str, force: bool = False):
        self.http.request("DELETE", f"/volumes/{name}", params={"force": force},
                          not_found=VolumeNotFound)

    def prune(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Remove unused volumes"""
        params = {"filters": filters} if filters else None
        return self.http.request("POST", "/volumes/prune", params=params)
