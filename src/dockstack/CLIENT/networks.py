"""
Docker Networks API
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import NetworkNotFound

logger = logging.getLogger(__name__)


class Network:
    """Docker Network object"""

    def __init__(self, attrs: Dict[str, Any], collection: "NetworkCollection"):
        self.attrs = attrs
        self.collection = collection

    @property
    def id(self) -> str:
        return self.attrs.get("Id", "")

    @property
    def name(self) -> str:
        return self.attrs.get("Name", "")

    @property
    def labels(self) -> Dict[str, str]:
        return self.attrs.get("Labels") or {}

    def __repr__(self):
        return f"<Network: {self.name or self.id[:12]}>"

    def inspect(self) -> Dict[str, Any]:
        return self.collection.inspect(self.id)

    def reload(self) -> "Network":
        """Reload network data"""
        self.attrs = self.inspect()
        return self

    def remove(self):
        self.collection.remove(self.id)

    def connect(self, container_id: str, aliases: Optional[List[str]] = None):
        self.collection.connect(self.id, container_id, aliases=aliases)

    def disconnect(self, container_id: str, force: bool = False):
        self.collection.disconnect(self.id, container_id, force=force)


class NetworkCollection:
    """Docker Networks Collection"""

    def __init__(self, client):
        self.client = client

    @property
    def http(self):
        return self.client.http

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Network]:
        """
        List networks

        Args:
            filters: dict of filters (e.g., {'name': ['mynet']})
        """
        params = {"filters": filters} if filters else None
        data = self.http.request("GET", "/networks", params=params) or []
        return [Network(net, self) for net in data]

    def get(self, network_id: str) -> Network:
        """
        Get network by ID or name

        Raises:
            NetworkNotFound: If the network does not exist
        """
        return Network(self.inspect(network_id), self)

    def inspect(self, network_id: str) -> Dict[str, Any]:
        return self.http.request("GET", f"/networks/{network_id}", not_found=NetworkNotFound)

    def create(self, name: str, check_duplicate: bool = True, driver: str = "bridge",
               internal: bool = False, attachable: bool = False, ingress: bool = False,
               enable_ipv6: bool = False, options: Optional[Dict[str, str]] = None,
               labels: Optional[Dict[str, str]] = None) -> Network:
        """
        Create network

        Args:
            name: Network name
            check_duplicate: Ask the daemon to reject a duplicate name
            driver: Network driver (default: bridge)
            internal: Restrict external access to the network
            attachable: Allow manual container attachment
            ingress: Routing-mesh network (swarm only)
            enable_ipv6: Enable IPv6 networking
            options: Driver-specific options
            labels: Network labels

        Raises:
            Conflict: A network with this name already exists
        """
        config = {
            "Name": name,
            "CheckDuplicate": check_duplicate,
            "Driver": driver,
            "Internal": internal,
            "Attachable": attachable,
            "Ingress": ingress,
            "EnableIPv6": enable_ipv6,
            "Options": dict(options or {}),
            "Labels": dict(labels or {}),
        }
        result = self.http.request("POST", "/networks/create", data=config)
        logger.info("Created network %s", name)
        return Network({"Id": result.get("Id", ""), "Name": name, "Labels": config["Labels"]}, self)

    def remove(self, network_id: str):
        self.http.request("DELETE", f"/networks/{network_id}", not_found=NetworkNotFound)

    def connect(self, network_id: str, container_id: str, aliases: Optional[List[str]] = None):
        """Attach a container to a network"""
        body: Dict[str, Any] = {"Container": container_id}
        if aliases:
            body["EndpointConfig"] = {"Aliases": list(aliases)}
        self.http.request("POST", f"/networks/{network_id}/connect", data=body,
                          not_found=NetworkNotFound)

    def disconnect(self, network_id: str, container_id: str, force: bool = False):
        """Detach a container from a network"""
        self.http.request("POST", f"/networks/{network_id}/disconnect",
                          data={"Container": container_id, "Force": force},
                          not_found=NetworkNotFound)

    def prune(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Remove unused networks"""
        params = {"filters": filters} if filters else None
        return self.http.request("POST", "/networks/prune", params=params)
