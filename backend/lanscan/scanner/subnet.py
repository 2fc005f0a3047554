"""
Host range computation for the local IPv4 subnet.

Everything here is pure: no sockets, no interface queries.
"""

from typing import List, Optional


def _parse_octets(value: str) -> Optional[List[int]]:
    """Parse a dotted-quad string into four octets, or None."""
    if not value:
        return None
    
    parts = value.strip().split('.')
    if len(parts) != 4:
        return None
    
    octets = []
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            return None
        octet = int(part)
        if octet > 255:
            return None
        octets.append(octet)
    
    return octets


def compute_host_range(address: str, mask: str) -> List[str]:
    """
    Enumerate the host addresses of the network containing `address`.
    
    The network and broadcast addresses are excluded by bumping the last
    octet of the network address up by one and the last octet of the
    broadcast address down by one, then walking every octet from the
    network bound to the broadcast bound (a outermost, d innermost).
    
    Args:
        address: Local IPv4 address (e.g. "192.168.1.10")
        mask: Netmask in dotted-quad form (e.g. "255.255.255.0")
        
    Returns:
        Host addresses in ascending order; empty if either input does not
        parse to four octets or the range is degenerate.
    """
    ip_octets = _parse_octets(address)
    mask_octets = _parse_octets(mask)
    if ip_octets is None or mask_octets is None:
        return []
    
    network = [ip & m for ip, m in zip(ip_octets, mask_octets)]
    broadcast = [ip | (~m & 0xFF) for ip, m in zip(ip_octets, mask_octets)]
    
    network[3] += 1
    broadcast[3] -= 1
    
    hosts = []
    for a in range(network[0], broadcast[0] + 1):
        for b in range(network[1], broadcast[1] + 1):
            for c in range(network[2], broadcast[2] + 1):
                for d in range(network[3], broadcast[3] + 1):
                    hosts.append(f"{a}.{b}.{c}.{d}")
    
    return hosts


def format_subnet(address: str, mask: str) -> str:
    """Return the CIDR label (e.g. "192.168.1.0/24") or "" if unparsable."""
    ip_octets = _parse_octets(address)
    mask_octets = _parse_octets(mask)
    if ip_octets is None or mask_octets is None:
        return ""
    
    network = '.'.join(str(ip & m) for ip, m in zip(ip_octets, mask_octets))
    mask_bits = sum(bin(m).count('1') for m in mask_octets)
    return f"{network}/{mask_bits}"
