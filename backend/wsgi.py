# backend/wsgi.py
from safeledger import create_app

app = create_app()
