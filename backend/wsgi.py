# backend/wsgi.py
from wasteflow import create_app

app = create_app()
