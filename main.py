import os

from pos_server import create_app


if __name__ == '__main__':
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    port = int(os.getenv('PORT', '5000'))
    host = os.getenv('HOST', '0.0.0.0')
    app = create_app()
    app.run(host=host, port=port, debug=debug)
