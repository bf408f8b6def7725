# backend/wsgi.py
from bms_pos import create_app

app = create_app()
