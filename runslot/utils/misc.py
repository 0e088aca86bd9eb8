"""
Miscellaneous helpers for the runslot CLI.

Key utilities:
- daemon_url: Construct daemon endpoint URLs
- parse_error_response: Extract an error message from a daemon response
- format_timestamp: Render epoch seconds for tables
- format_duration: Render the duration of a finished run
"""

import time
from typing import Optional

def daemon_url(port: int) -> str:
    """
    Construct the daemon API base URL.

    :param port: Port number where the daemon is listening.
    :return: Full base URL for daemon API requests.
    """
    return f"http://0.0.0.0:{port}"

def parse_error_response(resp) -> str:
    """Parse an error response, falling back to the raw body."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            return data.get("detail") or data.get("error") or data.get("message") or str(data)
        return str(data)
    except ValueError:
        pass

    # Truncate long bodies
    return resp.text.strip()[:500]

def format_timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))

def format_duration(start: Optional[float], end: Optional[float]) -> str:
    if start is None or end is None:
        return "-"
    seconds = max(0.0, end - start)
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    return f"{minutes}m{seconds:02d}s"
