"""Local subnet device discovery: ICMP sweep plus mDNS service correlation."""

__version__ = "1.0.0"
