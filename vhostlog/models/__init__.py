from vhostlog.models.traffic import Traffic
from vhostlog.models.vhost import Vhost

__all__ = ["Traffic", "Vhost"]
