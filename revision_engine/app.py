"""
Revision Engine - Flask Application
Serves the snapshot differ and tracking sessions as a local JSON API.
"""

from flask import Flask

from config_logging import APP_NAME, __version__, get_config, get_logger
from .routes import revision_blueprint

logger = get_logger('revision_engine.app')


def create_app(url_prefix: str = '/api/revision') -> Flask:
    """Build the Flask application with the revision blueprint registered."""
    config = get_config()
    is_valid, errors = config.validate()
    for error in errors:
        logger.warning(f"Configuration problem: {error}")

    app = Flask(__name__)
    # Leave room for the JSON envelope around two full snapshots
    app.config['MAX_CONTENT_LENGTH'] = config.max_document_chars * 8 + 64 * 1024
    app.register_blueprint(revision_blueprint, url_prefix=url_prefix)

    logger.info(f"{APP_NAME} v{__version__} ready at {url_prefix}",
                valid_config=is_valid)
    return app


def main():
    config = get_config()
    create_app().run(host=config.host, port=config.port, debug=config.debug)


if __name__ == '__main__':
    main()
