"""
Database initialization script for deployment
Run with: python init_db.py
"""
import os

from app import create_app
from models import db, ensure_admin


def initialize_database():
    """Initialize database tables and the administrator account"""
    app = create_app()
    with app.app_context():
        print("Creating database tables...")
        db.create_all()

        admin_email = os.environ.get('ADMIN_EMAIL')
        admin_password = os.environ.get('ADMIN_PASSWORD')
        if admin_email and admin_password:
            ensure_admin(admin_email, admin_password)
            print(f"Administrator account ready: {admin_email}")
        else:
            print("ADMIN_EMAIL/ADMIN_PASSWORD not set; skipping administrator account.")

        print("Database initialized successfully!")


if __name__ == "__main__":
    initialize_database()
