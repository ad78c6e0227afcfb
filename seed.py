from auth import issue_token
from models import db, User, Painting
from datetime import datetime


def create_sample_data():
    """Create demo users and paintings if the database is empty. Needs an app context."""
    if db.session.query(Painting).count() > 0:
        print("ℹ️ Database already contains data. Skipping seed.")
        return

    print("📦 Database is empty. Seeding with sample data...")

    artist = User(name="Demo Artist", email="artist@example.com", role="artist", created_at=datetime.now())
    buyers = [
        User(name="Alice Buyer", email="alice@example.com", role="buyer", created_at=datetime.now()),
        User(name="Bob Buyer", email="bob@example.com", role="buyer", created_at=datetime.now()),
    ]
    db.session.add(artist)
    db.session.add_all(buyers)
    db.session.flush()

    sample_paintings = [
        Painting(
            title="Harbour at Dusk",
            description="Oil on canvas, warm evening light over fishing boats.",
            price=1200,
            artist_id=artist.id,
            image_url="uploads/harbour.jpg",
        ),
        Painting(
            title="Study in Blue",
            description="Abstract acrylic study in layered blues.",
            price=450,
            artist_id=artist.id,
            image_url="uploads/study-blue.jpg",
        ),
        Painting(
            title="Olive Grove",
            description="Plein-air watercolour of an olive grove in spring.",
            price=300,
            artist_id=artist.id,
            image_url="uploads/olive-grove.jpg",
        ),
    ]
    db.session.add_all(sample_paintings)
    db.session.commit()
    print("✅ Sample data created.")

    # Demo bearer tokens stand in for the identity service during local development.
    for user in [artist] + buyers:
        print(f"   {user.role:<6} {user.email:<20} token: {issue_token(user)}")


def init_database():
    """Create the schema and seed demo data. Needs an app context."""
    print("Initializing database schema...")
    db.create_all()
    print("✅ Database schema initialized.")

    print("\nCreating sample data (if database is empty)...")
    create_sample_data()
    print("✅ Sample data check complete.")


if __name__ == '__main__':
    from app import create_app
    with create_app().app_context():
        create_sample_data()
