# Configuration settings should be set in app.config
# get_config falls back to the ContentAPI class attributes and the environment
import logging
import os
from flask import current_app
from functools import lru_cache
import contentapi
from typing import Any, Optional


@lru_cache(maxsize=128)
def get_config(option: str) -> Optional[Any]:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        result = getattr(contentapi.ContentAPI, option, os.environ.get(option, None))
    return result


def get_int_config(option: str, default: Optional[int] = None) -> Optional[int]:
    """
    :param option: configuration parameter
    :param default: value used when the parameter is unset or not an integer
    :return: integer configuration value
    """
    value = get_config(option)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        contentapi.log.warning(f"Invalid integer config value for {option}: {value!r}")
        return default


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return contentapi.log.getEffectiveLevel() < logging.INFO
