import os

from golfimprover import create_app
from golfimprover.utils.log_setup import setup_logging


setup_logging()
app = create_app()


if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    app.run(debug=debug)
