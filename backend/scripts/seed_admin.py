#!/usr/bin/env python3
"""
Staff User Seed Script
Creates an admin or auditor account for the CI Compliance Engine.

Usage:
    python -m scripts.seed_admin <email> <password> [admin|auditor]

Example:
    python -m scripts.seed_admin auditor@ci-engine.example securepassword123 auditor
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, engine, Base
from app.models.db_models import UserDB, UserRole
from app.auth import hash_password

STAFF_ROLES = (UserRole.ADMIN.value, UserRole.AUDITOR.value)


def create_staff_user(email: str, password: str, role: str = UserRole.ADMIN.value) -> bool:
    """Create an admin or auditor user in the database."""
    # Ensure tables exist
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()

        if existing:
            if existing.role == role:
                print(f"User '{email}' already has the {role} role.")
                return False
            existing.role = role
            db.commit()
            print(f"Changed role of existing user '{email}' to {role}.")
            return True

        user = UserDB(
            id=str(uuid4()),
            email=email,
            password_hash=hash_password(password),
            role=role,
        )

        db.add(user)
        db.commit()

        print("Staff user created successfully!")
        print(f"  Email: {email}")
        print(f"  Role: {role}")
        return True

    except Exception as e:
        print(f"Error creating staff user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (3, 4):
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    password = sys.argv[2]
    role = sys.argv[3] if len(sys.argv) == 4 else UserRole.ADMIN.value

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    if role not in STAFF_ROLES:
        print(f"Error: Role must be one of {', '.join(STAFF_ROLES)}.")
        sys.exit(1)

    success = create_staff_user(email, password, role)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
