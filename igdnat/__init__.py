"""igdnat: UPnP Internet Gateway Device port-mapping client.

Turns SSDP discovery responses into resolved gateway references and manages
port mappings on them over the WANIPConnection control protocol.
"""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "igdnat contributors"
