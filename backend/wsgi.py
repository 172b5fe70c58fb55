# backend/wsgi.py
from vending import create_app

app = create_app()
