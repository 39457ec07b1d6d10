# backend/wsgi.py
from inventory_flow import create_app

app = create_app()
