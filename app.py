"""Entry point when run as ``python app.py``.

Starts the Flask JSON API. The command line interface stays available through
``python -m hoopclub``.
"""

from hoopclub.web import main as run_web


if __name__ == "__main__":
    run_web()
