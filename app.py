import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

import auctions
import errors
import realtime
from config import Config
from models import db
from routes import api, cache

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    db.init_app(app)
    migrate.init_app(app, db)
    cache.init_app(app)
    realtime.init_app(app)

    app.register_blueprint(api)
    register_error_handlers(app)
    register_commands(app)
    return app


def register_error_handlers(app):

    @app.errorhandler(errors.MarketplaceError)
    def handle_marketplace_error(e):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.name.lower().replace(' ', '_'),
                        'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error: %s", e)
        db.session.rollback()
        return jsonify({'success': False, 'error': 'server_error',
                        'message': 'An unexpected error occurred.'}), 500


def register_commands(app):

    @app.cli.command('sweep-auctions')
    def sweep_auctions_command():
        """Close every auction that is past its end time."""
        closed = auctions.sweep_expired_auctions()
        click.echo(f"Closed {closed} expired auction(s).")

    @app.cli.command('init-db')
    def init_db_command():
        """Create the schema and seed demo data."""
        from seed import init_database
        init_database()
        click.echo("Database setup finished.")


def start_auction_sweeper(app):
    """Optional background close of overdue auctions.

    Bids and joins re-check expiry themselves; this only keeps stored state
    and connected clients tidy.
    """
    interval = app.config['AUCTION_SWEEP_INTERVAL']
    if interval <= 0:
        return None

    def sweep_forever():
        while True:
            realtime.socketio.sleep(interval)
            with app.app_context():
                try:
                    auctions.sweep_expired_auctions()
                except Exception:
                    logger.exception("Auction sweep failed")
                    db.session.rollback()

    return realtime.socketio.start_background_task(sweep_forever)
