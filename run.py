"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py init-db
    flask --app run.py seed-demo
    flask --app run.py --debug run

    # follow supplier responses for an asset
    flask --app run.py watch-quotes 1 --interval 20

"""

from quotedesk import create_app

# WSGI application object; `flask run` and WSGI servers look for `app`.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only); use `flask run` or a WSGI server otherwise.
    app.run(debug=True)
