# backend/wsgi.py
from inventory_cutover import create_app

app = create_app()
