"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py --debug run

Seed the default purchase categories and the first super admin:

    flask --app run.py seed-categories
    flask --app run.py create-super-admin

"""

from lrsync import create_app

# WSGI application object. `flask run` and production servers (gunicorn run:app) look for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only).
    app.run(debug=True)
