import logging

import firebase_admin
from firebase_admin import credentials

from .config import FIREBASE_PROJECT_ID

logger = logging.getLogger(__name__)


def get_firebase_app() -> firebase_admin.App:
    """Initialize Firebase Admin SDK (only once) and return the default app"""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    try:
        # Try to initialize with default credentials
        cred = credentials.ApplicationDefault()
        app = firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID})
        logger.info("Firebase Admin initialized with default credentials")
    except Exception:
        # Initialize without credentials (limited functionality)
        app = firebase_admin.initialize_app(options={"projectId": FIREBASE_PROJECT_ID})
        logger.info("Firebase Admin initialized with project ID only")
    return app
