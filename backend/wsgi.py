# backend/wsgi.py
from rentpay import create_app

app = create_app()
