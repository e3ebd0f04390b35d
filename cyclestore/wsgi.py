import atexit
import os

from .app import create_app

app = create_app()
atexit.register(app.extensions["cyclestore"]["store"].close)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.logger.info("Server listening on port %s", port)
    app.run(host="0.0.0.0", port=port)
