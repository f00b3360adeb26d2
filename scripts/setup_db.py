#!/usr/bin/env python3
"""
Database setup script for Credit Portfolio Management System
Creates tables, portfolio indexes, and the initial admin user
"""

import os
import sys

# Add parent directory to path to import credit_portfolio
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from credit_portfolio import create_app, db, integration_status
from credit_portfolio.config import config
from credit_portfolio.api.auth import password_problem
from credit_portfolio.models import AuditLog, User, DocumentProcessingRequest, GstFilingData, ReportGenerationJob
from credit_portfolio.services.query_optimization import RECOMMENDED_INDEXES
from credit_portfolio.utils.validators import DataValidator

def create_database():
    """Create all database tables and indexes."""
    print("Creating database tables...")

    try:
        db.create_all()
        print("✅ Database tables created successfully")

        create_performance_indexes()

        return True

    except SQLAlchemyError as e:
        print(f"❌ Error creating database: {str(e)}")
        return False

def create_performance_indexes():
    """
    Apply the recommended portfolio indexes.

    Postgres-only statements (GIN, partial indexes on the analytics table)
    fail on other backends and are skipped with a warning.
    """
    print("Creating performance indexes...")

    created = 0
    for name, index_sql in RECOMMENDED_INDEXES.items():
        try:
            db.session.execute(text(index_sql))
            db.session.commit()
            created += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            print(f"Warning: Could not create index {name}: {str(e).splitlines()[0]}")

    print(f"✅ {created}/{len(RECOMMENDED_INDEXES)} performance indexes created")

def prompt_admin_details():
    """Ask for admin details; returns None after printing the first problem found."""
    email = input("Enter admin email: ").strip()
    if not DataValidator.validate_email(email):
        print("❌ A valid email address is required")
        return None

    if User.find_by_email(email):
        print(f"❌ User with email {email} already exists")
        return None

    password = input("Enter admin password: ").strip()
    problem = password_problem(password)
    if problem:
        print(f"❌ {problem}")
        return None

    return {
        'email': email,
        'password': password,
        'first_name': input("Enter first name: ").strip() or "Admin",
        'last_name': input("Enter last name: ").strip() or "User",
        'organization': input("Enter organization (optional): ").strip() or None
    }

def create_admin_user():
    """Create the first super admin, or return the existing one."""
    print("\nCreating admin user...")

    existing_admin = User.query.filter_by(role='super_admin').first()
    if existing_admin:
        print(f"✅ Admin user already exists: {existing_admin.email}")
        return existing_admin

    details = prompt_admin_details()
    if details is None:
        return None

    try:
        password = details.pop('password')
        admin = User(role='super_admin', is_verified=True, **details)
        admin.set_password(password)
        db.session.add(admin)
        db.session.flush()

        AuditLog.record(action='admin_created', resource_type='user', resource_id=admin.id,
                        user_id=admin.id, details={'source': 'setup_db'})
        db.session.commit()

        print("✅ Admin user created successfully!")
        print(f"   Email: {admin.email}")
        print(f"   API Key: {admin.api_key}")

        return admin

    except SQLAlchemyError as e:
        print(f"❌ Error creating admin user: {str(e)}")
        db.session.rollback()
        return None

def check_database_health():
    """Check database connectivity and basic operations."""
    print("\nChecking database health...")

    try:
        db.session.execute(text('SELECT 1'))

        print("✅ Database connection successful")
        print(f"   Users: {User.query.count()}")
        print(f"   Portfolio companies: {DocumentProcessingRequest.query.count()}")
        print(f"   Cached GST filings: {GstFilingData.query.count()}")
        print(f"   Report jobs: {ReportGenerationJob.query.count()}")

        for name, status in integration_status(current_app.config).items():
            print(f"   {name}: {status}")

        return True

    except SQLAlchemyError as e:
        print(f"❌ Database health check failed: {str(e)}")
        return False

def main():
    """Main setup function."""
    print("🚀 Credit Portfolio Management System - Database Setup")
    print("=" * 50)

    app = create_app(config[os.environ.get('FLASK_ENV', 'default')])

    with app.app_context():
        if not create_database():
            print("❌ Setup failed at database creation step")
            return False

        admin = create_admin_user()
        if not admin:
            print("❌ Setup failed at admin user creation step")
            return False

        if not check_database_health():
            print("❌ Setup failed at health check step")
            return False

        print("\n" + "=" * 50)
        print("🎉 Database setup completed successfully!")
        print("\nNext steps:")
        print("1. Start the application: python app.py")
        print("2. Log in via POST /api/auth/login to obtain a JWT")
        print("3. Browse the portfolio at GET /api/portfolio")

        return True

if __name__ == "__main__":
    sys.exit(0 if main() else 1)
