"""CLI logging setup: plain %(message)s format on stdout."""

import logging
import sys

from syncdock.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger with a plain message format.

    Every handler sees records after secret redaction. ``verbose`` lowers
    the level to DEBUG so the full gcloud command lines are shown.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
