# backend/wsgi.py
from valepos import create_app

app = create_app()
