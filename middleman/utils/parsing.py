"""CSV/range expansion and address parsing helpers.

Shared by the configuration loader and the CLI:
- object id lists (e.g. "1,2,5-8")
- host/port pairs for the station ("192.168.1.50:15471")
- serial device/baud pairs for the feedback interface ("/dev/ttyUSB0:9600")
"""

from typing import Iterable, List, Optional, Union


def expand_csv_or_range(s: Optional[str]) -> List[str]:
    """Expand a CSV string and simple ranges into a list of strings.

    Supports:
    - CSV-separated values: "1,2,3" -> ["1", "2", "3"]
    - Numeric ranges: "100-103" -> ["100", "101", "102", "103"]
    - Reverse ranges: "5-1" -> ["5", "4", "3", "2", "1"]
    - Non-numeric strings pass through: ">=200" -> [">=200"]

    Returns an empty list for None/empty input.
    """
    if not s:
        return []
    out: List[str] = []
    for part in str(s).split(','):
        p = part.strip()
        if not p:
            continue
        # Check if this looks like a range (contains single dash, not at start/end)
        if '-' in p and p.count('-') == 1 and not p.startswith('-') and not p.endswith('-'):
            a, b = p.split('-', 1)
            try:
                ia = int(a, 0)
                ib = int(b, 0)
                step = 1 if ia <= ib else -1
                for v in range(ia, ib + step, step):
                    out.append(str(v))
            except ValueError:
                # Not parseable as int range, keep as-is
                out.append(p)
        else:
            out.append(p)
    return out


def expand_int_range(s: Optional[str]) -> List[int]:
    """Expand a CSV/range string into a list of integers.

    Non-numeric values are skipped with no error.

    Examples:
        "1,5-8,10" -> [1, 5, 6, 7, 8, 10]
    """
    result: List[int] = []
    for item in expand_csv_or_range(s):
        try:
            result.append(int(item, 0))
        except (ValueError, TypeError):
            pass
    return result


def collect_object_ids(values: Union[None, str, int, Iterable[Union[str, int]]]) -> List[int]:
    """Normalize a config value into a sorted list of unique object ids.

    Accepts a single int, a CSV/range string, or a list mixing both.
    """
    if values is None:
        return []
    if isinstance(values, (str, int)):
        values = [values]
    ids = set()
    for item in values:
        if isinstance(item, int):
            ids.add(item)
        else:
            ids.update(expand_int_range(str(item)))
    return sorted(ids)


def parse_host_port(s: str, default_port: int = 15471) -> tuple:
    """Parse a host:port string into (host, port) tuple.

    Examples:
        "192.168.1.50:15471" -> ("192.168.1.50", 15471)
        "192.168.1.50" -> ("192.168.1.50", 15471)  # uses default

    Raises:
        ValueError: If port is not a valid integer
    """
    s = s.strip()
    if ':' in s:
        host, port_str = s.rsplit(':', 1)
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid port number: {port_str}")
        return (host, port)
    return (s, default_port)


def parse_serial_baud(s: str, default_baud: int = 9600) -> tuple:
    """Parse a serial port:baud string into (port, baud) tuple.

    Examples:
        "/dev/ttyUSB0:9600" -> ("/dev/ttyUSB0", 9600)
        "COM5" -> ("COM5", 9600)  # uses default

    Raises:
        ValueError: If baud is not a valid integer
    """
    s = s.strip()
    if ':' in s:
        port, baud_str = s.rsplit(':', 1)
        try:
            baud = int(baud_str)
        except ValueError:
            raise ValueError(f"Invalid baud rate: {baud_str}")
        return (port, baud)
    return (s, default_baud)
