import logging
import os
import sys
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from .request import JsonApiRequest
from .response import JsonApiResponse
from .config import get_config
import contentapi
import flask.app


class ContentAPI:
    """This class configures the Flask application to serve the exposed models
    :param app: a Flask application.
    :param prefix: URL prefix of the api
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables
    MAX_PAGE_SIZE = 50
    DEFAULT_INCLUDE = ""  # include paths used when the request has no include parameter
    FILTER_MAX_PASSES = None  # max. filter tree build passes, the number of filter entries + 1 by default
    URL_ROOT = None  # absolute url root used in the links, the request url root by default
    LOGLEVEL = logging.WARNING
    ENABLE_CACHE_HEADERS = True
    #
    config = {}

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(self, app: flask.app.Flask, prefix: str = "", app_db=None, **kwargs) -> None:
        """
        API and application initialization
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions.get("sqlalchemy", contentapi.DB)

        contentapi.DB = self.db = app_db
        self.prefix = prefix

        app.request_class = JsonApiRequest
        app.response_class = JsonApiResponse
        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(ContentAPI, conf_name, conf_val)

        for conf_name in ("MAX_PAGE_SIZE", "DEFAULT_INCLUDE", "FILTER_MAX_PASSES", "URL_ROOT", "LOGLEVEL", "ENABLE_CACHE_HEADERS"):
            if conf_name in app.config:
                setattr(ContentAPI, conf_name, app.config[conf_name])

        if "LOGLEVEL" in app.config:
            log.setLevel(app.config["LOGLEVEL"])
        get_config.cache_clear()

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. https://flask.palletsprojects.com/en/latest/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stderr so we log eveything to sys.stderr
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = ContentAPI.init_logging(LOGLEVEL)
