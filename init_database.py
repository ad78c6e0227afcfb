from app import create_app
from seed import init_database

app = create_app()

# The app context is needed so SQLAlchemy knows which database to connect to.
with app.app_context():
    init_database()

print("\nDatabase setup finished.")
print("You can now run the application using: python wsgi.py")
