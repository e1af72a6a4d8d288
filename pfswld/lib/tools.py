"""
Miscellaneous helper functions for the command line tools.
"""
from __future__ import annotations

import datetime
import os
import sys


def get_terminal_size(default=0):
    """
    Returns the size of the currently attached terminal. If the environment variable
    `PFSWLD_TERM_SIZE` is set to an integer value, it takes prescedence. If the width of the
    terminal cannot be determined or if the width is less than 2 characters, the function
    returns the default.
    """
    from pfswld.lib.environment import environment
    ev_terminal_size = environment.term_size.value
    if ev_terminal_size and ev_terminal_size > 0:
        return ev_terminal_size
    width = default
    for stream in (sys.stderr, sys.stdout):
        if stream.isatty():
            try:
                width = os.get_terminal_size(stream.fileno()).columns
            except OSError:
                width = default
            else:
                break
    return default if width < 2 else width - 1


def date_from_timestamp(ts: int | float):
    """
    Convert a UTC timestamp to a datetime object.
    """
    if sys.version_info >= (3, 12):
        dt = datetime.datetime.fromtimestamp(ts, datetime.UTC)
    else:
        dt = datetime.datetime.utcfromtimestamp(ts)
    return dt.replace(tzinfo=None)
