"""
Main application entry point for Credit Portfolio Management System
"""

import os

import click
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from credit_portfolio import create_app, db
from credit_portfolio.config import config
from credit_portfolio.api.auth import password_problem
from credit_portfolio.models import (
    User, DocumentProcessingRequest, ProcessingLog, AuditLog, GstFilingData, ChatConversation,
    ReportTemplate, ReportGenerationJob, ScheduledReport
)
from credit_portfolio.services.query_optimization import RECOMMENDED_INDEXES

# Create Flask application
app = create_app(config[os.environ.get('FLASK_ENV', 'default')])

@app.shell_context_processor
def make_shell_context():
    """Make database models available in Flask shell."""
    return {
        'db': db,
        'User': User,
        'DocumentProcessingRequest': DocumentProcessingRequest,
        'ProcessingLog': ProcessingLog,
        'AuditLog': AuditLog,
        'GstFilingData': GstFilingData,
        'ChatConversation': ChatConversation,
        'ReportTemplate': ReportTemplate,
        'ReportGenerationJob': ReportGenerationJob,
        'ScheduledReport': ScheduledReport
    }

@app.cli.command()
def init_db():
    """Create tables and the recommended portfolio indexes."""
    db.create_all()

    applied = 0
    for name, index_sql in RECOMMENDED_INDEXES.items():
        try:
            db.session.execute(text(index_sql))
            db.session.commit()
            applied += 1
        except SQLAlchemyError:
            db.session.rollback()
            click.echo(f"Skipped index {name} (not supported by this database)")

    click.echo(f"Database initialized with {applied}/{len(RECOMMENDED_INDEXES)} indexes")

@app.cli.command()
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--first-name', prompt=True, default='Admin')
@click.option('--last-name', prompt=True, default='User')
@click.option('--organization', default=None)
def create_admin(email, password, first_name, last_name, organization):
    """Create a super admin account."""
    if User.find_by_email(email):
        raise click.ClickException(f"User with email {email} already exists")

    problem = password_problem(password)
    if problem:
        raise click.ClickException(problem)

    admin = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        organization=organization,
        role='super_admin',
        is_verified=True
    )
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()

    click.echo(f"Admin user created: {admin.email}")
    click.echo(f"API Key: {admin.api_key}")

if __name__ == '__main__':
    # Development server
    app.run(host='0.0.0.0', port=5000, debug=True)
