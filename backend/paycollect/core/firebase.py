# core/firebase.py
import base64
import json
import logging

from firebase_admin import credentials, firestore, get_app, initialize_app

from paycollect.core.config import settings

logger = logging.getLogger("paycollect")

_db = None


def init_firebase():
    try:
        get_app()
        logger.info("✅ Firebase Admin SDK already initialized")
        return
    except ValueError:
        pass

    if settings.PAYCOLLECT_FIREBASE_KEY:
        try:
            decoded_json = base64.b64decode(settings.PAYCOLLECT_FIREBASE_KEY).decode("utf-8")
            service_account_info = json.loads(decoded_json)
            logger.info("🔑 Loaded Firebase credentials from PAYCOLLECT_FIREBASE_KEY")
        except Exception as e:
            raise RuntimeError(f"❌ Failed to decode or parse PAYCOLLECT_FIREBASE_KEY: {e}")

        project_id = service_account_info.get("project_id")
        if not project_id:
            raise ValueError("❌ 'project_id' missing in Firebase service account JSON")

        initialize_app(credentials.Certificate(service_account_info))
        logger.info(f"🔥 Firebase Admin SDK initialized | Project: {project_id}")
        return

    if settings.GOOGLE_APPLICATION_CREDENTIALS:
        initialize_app(credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS))
        logger.info("🔥 Firebase Admin SDK initialized from GOOGLE_APPLICATION_CREDENTIALS")
        return

    # Falls back to ambient credentials (emulator, workload identity)
    initialize_app()
    logger.info("🔥 Firebase Admin SDK initialized with application default credentials")


def get_db():
    """Firestore client, initialised on first use so imports stay side-effect free."""
    global _db
    if _db is None:
        init_firebase()
        _db = firestore.client()
        logger.info("✅ Firestore client ready")
    return _db
