"""Runtime settings for feed downloads."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = "feedingest (+https://github.com/feedingest/feedingest)"
DEFAULT_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/rdf+xml, "
    "application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8"
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class FetchSettings:
    timeout: float = 60.0
    user_agent: str = DEFAULT_USER_AGENT
    disable_compression: bool = False
    accept_html_if_xml_error: bool = True
    max_concurrent_jobs: int = 8

    @classmethod
    def from_env(cls, prefix: str = "FEEDINGEST_") -> FetchSettings:
        """Build settings from ``FEEDINGEST_*`` environment variables.

        Unset variables keep their defaults.
        """
        settings = cls()
        timeout = os.environ.get(f"{prefix}TIMEOUT")
        if timeout:
            settings.timeout = float(timeout)
        user_agent = os.environ.get(f"{prefix}USER_AGENT")
        if user_agent:
            settings.user_agent = user_agent
        disable_compression = os.environ.get(f"{prefix}DISABLE_COMPRESSION")
        if disable_compression is not None:
            settings.disable_compression = disable_compression.lower() in _TRUE_VALUES
        accept_html = os.environ.get(f"{prefix}ACCEPT_HTML_IF_XML_ERROR")
        if accept_html is not None:
            settings.accept_html_if_xml_error = accept_html.lower() in _TRUE_VALUES
        max_jobs = os.environ.get(f"{prefix}MAX_CONCURRENT_JOBS")
        if max_jobs:
            settings.max_concurrent_jobs = max(1, int(max_jobs))
        return settings
