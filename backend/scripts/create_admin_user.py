"""
Script to create the first admin user.
Run this after migrations so someone can call the admin-only sweep endpoint.
"""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tfd_reports.core.database import SessionLocal
from tfd_reports.models.user import User
from tfd_reports.api.auth import hash_password


def create_admin_user(email: str, password: str, full_name: str = "Administrador"):
    """Create an admin user, or promote an existing one."""
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            if existing.role == 'admin':
                print(f"User with email {email} is already an admin")
                return
            existing.role = 'admin'
            db.commit()
            print(f"✅ Promoted {email} to admin")
            return

        admin = User(
            email=email,
            hashed_password=hash_password(password),
            full_name=full_name,
            is_active=True,
            role='admin',
        )
        db.add(admin)
        db.commit()
        print(f"✅ Admin user created: {email}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error creating admin user: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description='Create admin user')
    parser.add_argument('--email', required=True, help='Admin email')
    parser.add_argument('--password', required=True, help='Admin password')
    parser.add_argument('--name', default='Administrador', help='Admin full name')

    args = parser.parse_args()
    create_admin_user(args.email, args.password, args.name)
