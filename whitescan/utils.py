from datetime import timedelta
from typing import List


def parse_ports(port_input: str) -> List[int]:
    """
    Parses a string of ports (spaces, commas, ranges) into a list of integers.
    Order of first appearance is kept since the prober tries ports in order.
    Example: "443 80 8080-8082" -> [443, 80, 8080, 8081, 8082]
    """
    ports = {}
    # Replace commas with spaces to handle both formats
    tokens = port_input.replace(',', ' ').split()

    for token in tokens:
        if '-' in token:
            try:
                start, end = map(int, token.split('-'))
            except ValueError:
                continue
            # Clamp to valid range 1-65535
            start = max(1, start)
            end = min(65535, end)
            for p in range(start, end + 1):
                ports.setdefault(p, None)
        else:
            try:
                p = int(token)
            except ValueError:
                continue
            if 1 <= p <= 65535:
                ports.setdefault(p, None)
    return list(ports)


def format_ms(value: timedelta) -> str:
    return f"{value.total_seconds() * 1000:.0f}ms"
