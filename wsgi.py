import eventlet
eventlet.monkey_patch()

import os

from app import create_app, start_auction_sweeper
from realtime import socketio

app = create_app()
start_auction_sweeper(app)

# Gunicorn serves this with a single eventlet worker:
#   gunicorn --worker-class eventlet -w 1 wsgi:application
application = app

if __name__ == '__main__':
    # Local development only.
    port = int(os.getenv('PORT', 5000))
    print(f"Starting art marketplace server on http://localhost:{port}")
    print("Run `flask --app wsgi init-db` first to create tables and demo data.")
    socketio.run(app, host='0.0.0.0', port=port, debug=True)
