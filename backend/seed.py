"""
Seed script to populate the database with an operator, a demo developer
and a demo project with explicit caps.
Run from backend/: python seed.py
"""
import sys
import os
sys.path.insert(0, os.path.dirname(__file__))

from tenantguard import create_app, db
from tenantguard.models import Developer, Project, ProjectCap
from tenantguard.models.quota import DEFAULT_CAPS
from tenantguard.utils.auth import generate_token

ACCOUNTS = [
    ("admin@tenantguard.local", "Admin", "admin"),
    ("operator@tenantguard.local", "Operator", "operator"),
    ("demo@tenantguard.local", "Demo Developer", "developer"),
]

DEMO_PROJECT = "Demo Project"


def _get_or_create_developer(email, name, role):
    developer = Developer.query.filter_by(email=email).first()
    if developer:
        print(f"  {role.title()} '{email}' already exists (id={developer.id}), skipping.")
        return developer
    developer = Developer(email=email, name=name, role=role, is_active=True)
    db.session.add(developer)
    db.session.commit()
    print(f"  Created {role} '{email}' (id={developer.id})")
    return developer


def seed():
    app = create_app()
    with app.app_context():
        developers = {role: _get_or_create_developer(email, name, role)
                      for email, name, role in ACCOUNTS}

        owner = developers["developer"]
        project = Project.query.filter_by(name=DEMO_PROJECT, owner_id=owner.id).first()
        if project:
            print(f"  Project '{DEMO_PROJECT}' already exists (id={project.id}), skipping.")
        else:
            project = Project(name=DEMO_PROJECT, owner_id=owner.id)
            db.session.add(project)
            db.session.commit()
            for cap_type, limit_value in DEFAULT_CAPS.items():
                db.session.add(ProjectCap(project_id=project.id, cap_type=cap_type,
                                          limit_value=limit_value, hard_cap=True))
            db.session.commit()
            print(f"  Created project '{DEMO_PROJECT}' (id={project.id}) with default caps")

        print("\nTokens (valid for one hour):")
        for role, developer in developers.items():
            print(f"  {role}: {generate_token(developer.id, developer.email)}")

        print("\nDone.")


if __name__ == "__main__":
    seed()
